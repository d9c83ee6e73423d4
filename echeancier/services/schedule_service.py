from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from echeancier.errors import RegenerationNotConfirmed
from echeancier.models.schedule import Installment, LineItem, QuoteDocument, ScheduleSummary
from echeancier.services.formatting import add_months, last_day_of_month, month_label

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE_PCT = 0.01
COVERAGE_TOLERANCE = 1.0
DEFAULT_DEPOSIT_PCT = 30.0

STRATEGIES = ("phases", "groups", "equal", "monthly")


# ---------- Helpers ---------- #

def _ttc(amount_ht: float, vat_rate: float) -> float:
    return amount_ht * (1 + vat_rate / 100)

def _pct_of(amount: float, total_amount: float) -> float:
    # total nul ou négatif -> 0, jamais NaN/inf
    return amount / total_amount * 100 if total_amount > 0 else 0.0

def _renumber(installments: Iterable[Installment]) -> List[Installment]:
    return [inst.model_copy(update={"schedule_number": i + 1}) for i, inst in enumerate(installments)]

def _billable(line_items: Iterable[LineItem]) -> List[LineItem]:
    return [li for li in line_items if li.is_billable]

def _split_percentages(count: int) -> List[int]:
    """Répartition entière : le premier versement absorbe le reste (100 exact)."""
    if count < 1:
        raise ValueError(f"count must be >= 1, got {count}")
    base = 100 // count
    remainder = 100 - base * count
    return [base + remainder if i == 0 else base for i in range(count)]

def _installment(number: int, title: str, amount_ht: float, total_amount: float, vat_rate: float, **extra: Any) -> Installment:
    return Installment(
        schedule_number=number,
        title=title,
        percentage=_pct_of(amount_ht, total_amount),
        amount_ht=amount_ht,
        amount_ttc=_ttc(amount_ht, vat_rate),
        vat_rate=vat_rate,
        **extra,
    )


# ---------- Génération ---------- #

def generate_from_phases(line_items: Sequence[LineItem], total_amount: float, vat_rate: float) -> List[Installment]:
    """
    Une échéance par ligne de type "phase" incluse.
    Aucune ligne facturable -> un acompte global de 100 %.
    Lignes facturables mais aucune phase -> liste vide (pas de repli).
    """
    included = _billable(line_items)
    if not included:
        return [
            Installment(
                schedule_number=1,
                title="Acompte global",
                percentage=100.0,
                amount_ht=total_amount,
                amount_ttc=_ttc(total_amount, vat_rate),
                vat_rate=vat_rate,
                milestone="Signature du contrat",
            )
        ]

    phases = [li for li in included if li.line_type == "phase"]
    return [
        _installment(
            i + 1,
            f"Acompte {phase.phase_name or ''}".rstrip(),
            phase.amount,
            total_amount,
            vat_rate,
            description=phase.phase_description,
            milestone=phase.phase_name,
            phase_ids=[phase.id],
        )
        for i, phase in enumerate(phases)
    ]


def generate_from_groups(line_items: Sequence[LineItem], total_amount: float, vat_rate: float) -> List[Installment]:
    """Une échéance par groupe, plus une pour les lignes hors groupe ; sans groupe -> par phases."""
    groups = [li for li in line_items if li.line_type == "group"]
    if not groups:
        return generate_from_phases(line_items, total_amount, vat_rate)

    included = _billable(line_items)
    out: List[Installment] = []
    for i, group in enumerate(groups):
        members = [li for li in included if li.group_id == group.id]
        group_total = sum(li.amount for li in members)
        out.append(_installment(
            len(out) + 1,
            f"Acompte {group.phase_name or f'Groupe {i + 1}'}",
            group_total,
            total_amount,
            vat_rate,
            description=group.phase_description,
            milestone=group.phase_name,
            phase_ids=[li.id for li in members],
        ))

    ungrouped = [li for li in included if not li.group_id and li.line_type != "group"]
    ungrouped_total = sum(li.amount for li in ungrouped)
    if ungrouped_total > 0:
        out.append(_installment(
            len(out) + 1,
            "Autres prestations",
            ungrouped_total,
            total_amount,
            vat_rate,
            phase_ids=[li.id for li in ungrouped],
        ))
    return out


def generate_equal_split(count: int, total_amount: float, vat_rate: float) -> List[Installment]:
    out: List[Installment] = []
    for i, pct in enumerate(_split_percentages(count)):
        amount_ht = total_amount * pct / 100
        out.append(Installment(
            schedule_number=i + 1,
            title=f"Acompte {i + 1}",
            percentage=float(pct),
            amount_ht=amount_ht,
            amount_ttc=_ttc(amount_ht, vat_rate),
            vat_rate=vat_rate,
        ))
    return out


def generate_monthly_split(
    months: int,
    total_amount: float,
    vat_rate: float,
    start_date: Optional[date] = None,
    today: Optional[date] = None,
) -> List[Installment]:
    """Une facture par mois, datée du dernier jour du mois, à partir du mois de `start_date`."""
    start = start_date or today or date.today()
    out: List[Installment] = []
    for i, pct in enumerate(_split_percentages(months)):
        month_start = add_months(start, i)
        amount_ht = total_amount * pct / 100
        out.append(Installment(
            schedule_number=i + 1,
            title=f"Facture mois {i + 1}",
            percentage=float(pct),
            amount_ht=amount_ht,
            amount_ttc=_ttc(amount_ht, vat_rate),
            vat_rate=vat_rate,
            planned_date=last_day_of_month(month_start.year, month_start.month),
            milestone=month_label(month_start),
        ))
    return out


def regenerate(
    strategy: str,
    *,
    confirmed: bool,
    total_amount: float,
    vat_rate: float,
    line_items: Sequence[LineItem] = (),
    count: int = 2,
    months: int = 3,
    start_date: Optional[date] = None,
    today: Optional[date] = None,
) -> List[Installment]:
    """
    Point d'entrée destructif : remplace l'échéancier complet par la stratégie choisie.
    L'appelant doit avoir obtenu la confirmation de l'utilisateur.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown schedule strategy '{strategy}' (expected one of {', '.join(STRATEGIES)})")
    if not confirmed:
        raise RegenerationNotConfirmed(strategy)

    if strategy == "phases":
        out = generate_from_phases(line_items, total_amount, vat_rate)
    elif strategy == "groups":
        out = generate_from_groups(line_items, total_amount, vat_rate)
    elif strategy == "equal":
        out = generate_equal_split(count, total_amount, vat_rate)
    else:
        out = generate_monthly_split(months, total_amount, vat_rate, start_date=start_date, today=today)
    logger.info("Schedule regenerated with strategy=%s: %d installment(s)", strategy, len(out))
    return out


# ---------- Édition ---------- #

def add_installment(installments: Sequence[Installment], vat_rate: float) -> List[Installment]:
    n = len(installments) + 1
    new = Installment(
        schedule_number=n,
        title=f"Acompte {n}",
        percentage=0.0,
        amount_ht=0.0,
        amount_ttc=0.0,
        vat_rate=vat_rate,
    )
    return [*installments, new]


def remove_installment(installments: Sequence[Installment], installment_id: str) -> List[Installment]:
    if not any(inst.id == installment_id for inst in installments):
        return list(installments)
    return _renumber(inst for inst in installments if inst.id != installment_id)


def update_installment(
    installments: Sequence[Installment],
    installment_id: str,
    changes: Mapping[str, Any],
    total_amount: float,
) -> List[Installment]:
    """
    Applique `changes` à une échéance et recalcule les champs dérivés :
    - percentage -> amount_ht et amount_ttc (prioritaire si amount_ht est aussi fourni)
    - amount_ht -> percentage et amount_ttc
    - vat_rate seul -> amount_ttc depuis amount_ht
    Les autres échéances ne sont jamais modifiées.
    """
    changes = {k: v for k, v in changes.items() if k not in ("id", "schedule_number")}
    out: List[Installment] = []
    for inst in installments:
        if inst.id != installment_id:
            out.append(inst)
            continue

        merged: Dict[str, Any] = {**inst.model_dump(), **changes}
        new = Installment.model_validate(merged)
        if "percentage" in changes:
            amount_ht = total_amount * new.percentage / 100
            new = new.model_copy(update={"amount_ht": amount_ht, "amount_ttc": _ttc(amount_ht, new.vat_rate)})
        elif "amount_ht" in changes:
            new = new.model_copy(update={
                "percentage": _pct_of(new.amount_ht, total_amount),
                "amount_ttc": _ttc(new.amount_ht, new.vat_rate),
            })
        elif "vat_rate" in changes and "amount_ttc" not in changes:
            new = new.model_copy(update={"amount_ttc": _ttc(new.amount_ht, new.vat_rate)})
        out.append(new)
    return out


def move_installment(installments: Sequence[Installment], installment_id: str, direction: str) -> List[Installment]:
    if direction not in ("up", "down"):
        raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
    items = list(installments)
    index = next((i for i, inst in enumerate(items) if inst.id == installment_id), -1)
    if index == -1:
        return items
    new_index = index - 1 if direction == "up" else index + 1
    if new_index < 0 or new_index >= len(items):
        return items
    items[index], items[new_index] = items[new_index], items[index]
    return _renumber(items)


# ---------- Vues dérivées ---------- #

def total_percentage(installments: Iterable[Installment]) -> float:
    return sum(inst.percentage or 0 for inst in installments)

def total_ht(installments: Iterable[Installment]) -> float:
    return sum(inst.amount_ht or 0 for inst in installments)

def total_ttc(installments: Iterable[Installment]) -> float:
    return sum(inst.amount_ttc or 0 for inst in installments)

def is_balanced(installments: Iterable[Installment]) -> bool:
    return abs(total_percentage(installments) - 100) < BALANCE_TOLERANCE_PCT

def balance_status(installments: Sequence[Installment]) -> str:
    if not installments:
        return "empty"
    if is_balanced(installments):
        return "balanced"
    return "excess" if total_percentage(installments) > 100 else "incomplete"

def included_lines_total(line_items: Iterable[LineItem]) -> float:
    return sum(li.amount for li in _billable(line_items))

def missing_amount(installments: Iterable[Installment], line_items: Iterable[LineItem]) -> float:
    return max(0.0, included_lines_total(line_items) - total_ht(installments))

def has_coverage_gap(installments: Iterable[Installment], line_items: Iterable[LineItem]) -> bool:
    return missing_amount(installments, line_items) > COVERAGE_TOLERANCE


def deposit_amount(document: QuoteDocument, installments: Optional[Sequence[Installment]] = None) -> float:
    """
    Acompte : si requis et qu'au moins une échéance a un montant, c'est la première ;
    sinon total x deposit_percentage (30 % par défaut).
    """
    schedule = document.invoice_schedule if installments is None else installments
    if document.requires_deposit and any(i.amount_ht > 0 for i in schedule):
        return schedule[0].amount_ht
    pct = DEFAULT_DEPOSIT_PCT if document.deposit_percentage is None else document.deposit_percentage
    return document.total_amount * pct / 100


def summarize(
    document: QuoteDocument,
    line_items: Sequence[LineItem],
    installments: Optional[Sequence[Installment]] = None,
) -> ScheduleSummary:
    schedule = list(document.invoice_schedule if installments is None else installments)
    missing = missing_amount(schedule, line_items)
    return ScheduleSummary(
        count=len(schedule),
        total_percentage=total_percentage(schedule),
        total_ht=total_ht(schedule),
        total_ttc=total_ttc(schedule),
        is_balanced=is_balanced(schedule),
        balance_status=balance_status(schedule),
        included_lines_total=included_lines_total(line_items),
        missing_amount=missing,
        has_coverage_gap=missing > COVERAGE_TOLERANCE,
        deposit_amount=deposit_amount(document, schedule),
    )
