from __future__ import annotations
from calendar import monthrange
from datetime import date
from typing import Any

MONTH_NAMES = [
    "Janvier", "Février", "Mars", "Avril", "Mai", "Juin",
    "Juillet", "Août", "Septembre", "Octobre", "Novembre", "Décembre",
]

NBSP = "\u00a0"


def format_eur(value: Any) -> str:
    """1234.5 -> '1 234,50 €' (séparateur de milliers insécable)."""
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        amount = 0.0
    s = f"{amount:,.2f}"
    return s.replace(",", NBSP).replace(".", ",") + f"{NBSP}€"


def format_date_fr(d: date | None) -> str:
    return d.strftime("%d/%m/%Y") if d else ""


def month_label(d: date) -> str:
    return f"{MONTH_NAMES[d.month - 1]} {d.year}"


def last_day_of_month(year: int, month: int) -> date:
    return date(year, month, monthrange(year, month)[1])


def add_months(d: date, months: int) -> date:
    """Premier jour du mois situé `months` mois après celui de `d`."""
    idx = d.month - 1 + months
    return date(d.year + idx // 12, idx % 12 + 1, 1)
