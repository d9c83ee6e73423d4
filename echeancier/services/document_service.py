from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from echeancier.errors import DocumentNotFound, StaleDocumentError
from echeancier.models.common import utcnow
from echeancier.models.schedule import Installment, LineItem, QuoteDocument, ScheduleSummary
from echeancier.services import schedule_service as engine
from echeancier.services.settings_service import SettingsService, data_dir
from echeancier.storage.repo import JsonRepository, StaleRecordError

logger = logging.getLogger(__name__)


def _serialize(value: Any) -> Any:
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, date):
        return value.isoformat()
    return value


class DocumentService:
    """Stockage des devis (quotes.json) et de leurs lignes (quote_lines.json)."""

    def __init__(self, data_dir_path: Optional[str | Path] = None, settings: Optional[SettingsService] = None) -> None:
        base = Path(data_dir_path) if data_dir_path else data_dir()
        base.mkdir(parents=True, exist_ok=True)
        self.settings = settings or SettingsService(base / "settings.json")
        self.repo = JsonRepository(base / "quotes.json", entity_name="quote", key="id")
        self.lines_repo = JsonRepository(base / "quote_lines.json", entity_name="quote line", key="id")

    # ----- Devis ----- #

    def add_document(self, doc: QuoteDocument | Mapping[str, Any]) -> QuoteDocument:
        if isinstance(doc, QuoteDocument):
            payload = {k: v for k, v in doc.model_dump().items() if k == "id" or k in doc.model_fields_set}
        else:
            payload = dict(doc)
        # valeurs par défaut de settings.json pour ce qui n'est pas renseigné
        payload.setdefault("vat_rate", self.settings.default_vat_rate)
        payload.setdefault("deposit_percentage", self.settings.default_deposit_pct)
        new = QuoteDocument.model_validate(payload)
        return QuoteDocument.model_validate(self.repo.add(new))

    def load(self, document_id: str) -> QuoteDocument:
        d = self.repo.get_by_id(document_id)
        if d is None:
            raise DocumentNotFound(document_id)
        return QuoteDocument.model_validate(d)

    def save(
        self,
        document_id: str,
        partial: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> QuoteDocument:
        """Enregistre une partie du devis ; `expected_version` active le contrôle de concurrence."""
        record: Dict[str, Any] = {k: _serialize(v) for k, v in partial.items() if k not in ("id", "version")}
        record["id"] = document_id
        record["updated_at"] = utcnow().isoformat()
        try:
            merged = self.repo.update(record, expected_version=expected_version)
        except StaleRecordError as e:
            logger.warning("Stale write rejected on quote %s (expected v%s, current v%s)", document_id, e.expected, e.current)
            raise StaleDocumentError(document_id, e.expected, e.current) from e
        except KeyError as e:
            raise DocumentNotFound(document_id) from e
        return QuoteDocument.model_validate(merged)

    # ----- Lignes ----- #

    def list_line_items(self, document_id: str) -> List[LineItem]:
        out: List[LineItem] = []
        for d in self.lines_repo.find(lambda x: x.get("document_id") == document_id):
            try:
                out.append(LineItem.model_validate(d))
            except ValidationError:
                logger.warning("Skipping invalid line item %s on quote %s", d.get("id"), document_id)
                continue
        return out

    def add_line_item(self, document_id: str, item: LineItem | Mapping[str, Any]) -> LineItem:
        li = item if isinstance(item, LineItem) else LineItem.model_validate(item)
        li = li.model_copy(update={"document_id": document_id})
        return LineItem.model_validate(self.lines_repo.add(li))


class ScheduleEditor:
    """
    État explicite de l'onglet facturation d'un devis : document + lignes chargés,
    chaque modification de l'échéancier est enregistrée immédiatement.
    """

    def __init__(self, service: DocumentService, document_id: str):
        self.service = service
        self.document_id = document_id
        self.reload()

    def reload(self) -> None:
        self.document = self.service.load(self.document_id)
        self.line_items = self.service.list_line_items(self.document_id)

    @property
    def installments(self) -> List[Installment]:
        return list(self.document.invoice_schedule)

    def _commit(self, schedule: List[Installment]) -> List[Installment]:
        self.document = self.service.save(
            self.document_id,
            {"invoice_schedule": schedule},
            expected_version=self.document.version,
        )
        return self.installments

    def generate(
        self,
        strategy: str,
        *,
        confirmed: bool = False,
        count: int = 2,
        months: int = 3,
        start_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> List[Installment]:
        doc = self.document
        schedule = engine.regenerate(
            strategy,
            confirmed=confirmed,
            total_amount=doc.total_amount,
            vat_rate=doc.vat_rate,
            line_items=self.line_items,
            count=count,
            months=months,
            start_date=start_date or doc.expected_start_date,
            today=today,
        )
        return self._commit(schedule)

    def add(self) -> List[Installment]:
        return self._commit(engine.add_installment(self.installments, self.document.vat_rate))

    def remove(self, installment_id: str) -> List[Installment]:
        return self._commit(engine.remove_installment(self.installments, installment_id))

    def update(self, installment_id: str, **changes: Any) -> List[Installment]:
        return self._commit(
            engine.update_installment(self.installments, installment_id, changes, self.document.total_amount)
        )

    def move(self, installment_id: str, direction: str) -> List[Installment]:
        return self._commit(engine.move_installment(self.installments, installment_id, direction))

    def summary(self) -> ScheduleSummary:
        return engine.summarize(self.document, self.line_items)
