"""
ICS export of planned dates, French formatting helpers and settings.json.
"""

import json
from datetime import date

import pytest

from echeancier.models.schedule import QuoteDocument
from echeancier.services import schedule_service as engine
from echeancier.services.calendar_service import CalendarService
from echeancier.services.formatting import add_months, format_date_fr, format_eur, last_day_of_month, month_label
from echeancier.services.settings_service import SettingsService


@pytest.fixture
def monthly_quote():
    schedule = engine.generate_monthly_split(3, 9000, 20, start_date=date(2025, 1, 15))
    return QuoteDocument(number="DV-2025-0007", total_amount=9000, invoice_schedule=schedule)


class TestCalendarService:

    def test_one_event_per_dated_installment(self, monthly_quote, tmp_path):
        undated = engine.add_installment(monthly_quote.invoice_schedule, 20)
        doc = monthly_quote.model_copy(update={"invoice_schedule": undated})
        cal = CalendarService(tmp_path).build_calendar(doc)
        assert sorted(e.name for e in cal.events) == [
            "DV-2025-0007 – Facture mois 1",
            "DV-2025-0007 – Facture mois 2",
            "DV-2025-0007 – Facture mois 3",
        ]

    def test_description_carries_planned_date(self, monthly_quote, tmp_path):
        cal = CalendarService(tmp_path).build_calendar(monthly_quote)
        first = next(e for e in cal.events if e.name.endswith("Facture mois 1"))
        assert "Date prévue : 31/01/2025" in first.description
        assert "Jalon : Janvier 2025" in first.description

    def test_export_writes_ics_file(self, monthly_quote, tmp_path):
        path = CalendarService(tmp_path).export_schedule(monthly_quote)
        assert path.endswith("echeancier_DV-2025-0007.ics")
        content = open(path, encoding="utf-8").read()
        assert content.count("BEGIN:VEVENT") == 3
        assert "20250131" in content
        assert "20250228" in content

    def test_export_to_explicit_path(self, monthly_quote, tmp_path):
        target = tmp_path / "sub" / "agenda.ics"
        assert CalendarService(tmp_path).export_schedule(monthly_quote, target) == str(target)
        assert target.exists()

    def test_export_without_dates_raises(self, tmp_path):
        doc = QuoteDocument(number="DV-1", invoice_schedule=engine.generate_equal_split(2, 1000, 20))
        with pytest.raises(ValueError):
            CalendarService(tmp_path).export_schedule(doc)


class TestFormatting:

    def test_format_eur(self):
        assert format_eur(1234.5) == "1 234,50 €"
        assert format_eur(0) == "0,00 €"
        assert format_eur(None) == "0,00 €"
        assert format_eur("abc") == "0,00 €"

    def test_dates(self):
        assert format_date_fr(date(2025, 2, 3)) == "03/02/2025"
        assert format_date_fr(None) == ""
        assert month_label(date(2025, 8, 1)) == "Août 2025"
        assert last_day_of_month(2024, 2) == date(2024, 2, 29)
        assert add_months(date(2025, 11, 30), 3) == date(2026, 2, 1)


class TestSettingsService:

    def test_defaults_without_file(self, tmp_path):
        s = SettingsService(tmp_path / "missing.json")
        assert s.default_vat_rate == 20.0
        assert s.default_deposit_pct == 30.0

    def test_values_from_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"tva_pct": "10", "acompte_pct": 25, "exports": {"agenda_dir": str(tmp_path)}}))
        s = SettingsService(path)
        assert s.default_vat_rate == 10.0
        assert s.default_deposit_pct == 25.0
        assert s.exports_dir == tmp_path

    def test_corrupt_file_falls_back(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[oops", encoding="utf-8")
        assert SettingsService(path).default_vat_rate == 20.0

    def test_invalid_value_falls_back(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"acompte_pct": "beaucoup"}), encoding="utf-8")
        assert SettingsService(path).default_deposit_pct == 30.0
