from __future__ import annotations
import os
import re
from pathlib import Path
from typing import Optional

from ics import Calendar, Event

from echeancier.models.schedule import QuoteDocument
from echeancier.services.formatting import format_date_fr, format_eur
from echeancier.services.settings_service import SettingsService


def _slug(text: str) -> str:
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", (text or "").strip())
    return re.sub(r"\s+", "_", text) or "devis"


class CalendarService:
    """Export ICS des dates planifiées de l'échéancier (un évènement journée entière par échéance)."""

    def __init__(self, exports_dir: Optional[os.PathLike | str] = None, settings: Optional[SettingsService] = None):
        self.exports_dir = Path(exports_dir) if exports_dir else (settings or SettingsService()).exports_dir

    def build_calendar(self, document: QuoteDocument) -> Calendar:
        label = document.number or document.id
        c = Calendar()
        for inst in document.invoice_schedule:
            if inst.planned_date is None:
                continue
            e = Event()
            e.name = f"{label} – {inst.title}"
            e.begin = inst.planned_date.isoformat()
            e.make_all_day()
            lines = [
                f"Échéance n°{inst.schedule_number} ({inst.percentage:g} %)",
                f"Date prévue : {format_date_fr(inst.planned_date)}",
                f"Montant HT : {format_eur(inst.amount_ht)}",
                f"Montant TTC : {format_eur(inst.amount_ttc)}",
            ]
            if inst.milestone:
                lines.append(f"Jalon : {inst.milestone}")
            e.description = "\n".join(lines)
            c.events.add(e)
        return c

    def export_schedule(self, document: QuoteDocument, path: Optional[os.PathLike | str] = None) -> str:
        c = self.build_calendar(document)
        if not c.events:
            raise ValueError(f"Quote {document.number or document.id} has no planned invoice date to export")
        if path:
            out = Path(path)
        else:
            out = self.exports_dir / f"echeancier_{_slug(document.number or document.id)}.ics"
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            f.write(c.serialize())
        return str(out)
