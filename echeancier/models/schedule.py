from __future__ import annotations
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import date, datetime
from .common import Record, utcnow

BalanceStatus = Literal["empty", "balanced", "excess", "incomplete"]

DEFAULT_VAT_RATE = 20.0


class Installment(Record):
    """Une échéance de facturation planifiée sur un devis."""
    schedule_number: int = 1
    title: str = ""
    description: Optional[str] = None
    percentage: float = 0.0
    amount_ht: float = 0.0
    amount_ttc: float = 0.0
    vat_rate: float = DEFAULT_VAT_RATE
    planned_date: Optional[date] = None
    milestone: Optional[str] = None  # ex: "Validation APD"
    phase_ids: Optional[List[str]] = None


class LineItem(Record):
    document_id: Optional[str] = None
    amount: float = 0.0
    is_included: bool = True
    line_type: str = "phase"  # phase | group | discount | ...
    group_id: Optional[str] = None
    phase_name: Optional[str] = None
    phase_description: Optional[str] = None

    @property
    def is_billable(self) -> bool:
        return self.is_included and self.line_type != "discount"


class QuoteDocument(Record):
    number: Optional[str] = None
    total_amount: float = 0.0  # total HT
    vat_rate: float = DEFAULT_VAT_RATE
    expected_start_date: Optional[date] = None
    invoice_schedule: List[Installment] = Field(default_factory=list)
    requires_deposit: bool = False
    deposit_percentage: Optional[float] = None

    version: int = 1
    updated_at: datetime = Field(default_factory=utcnow)


class ScheduleSummary(BaseModel):
    count: int = 0
    total_percentage: float = 0.0
    total_ht: float = 0.0
    total_ttc: float = 0.0
    is_balanced: bool = False
    balance_status: BalanceStatus = "empty"
    included_lines_total: float = 0.0
    missing_amount: float = 0.0
    has_coverage_gap: bool = False
    deposit_amount: float = 0.0
