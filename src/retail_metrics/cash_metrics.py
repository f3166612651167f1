"""Till cash-outs (no-sale drawer openings) rolled up by reason and store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List

from . import data_manager, log
from .classifiers import classify_cash_out_reason
from .constants import (
    RECENT_CASH_OUTS_LIMIT,
    UNKNOWN_COMPANY_LABEL,
    UNKNOWN_JOURNAL_LABEL,
    CashOutReason,
)
from .lookups import ZERO, DateWindow


@dataclass
class CashOutReasonTotal:
    reason: CashOutReason
    total: Decimal = ZERO
    count: int = 0


@dataclass
class CashOutBreakdown:
    reason: CashOutReason
    store: str
    total: Decimal = ZERO
    count: int = 0


@dataclass(frozen=True)
class CashOutItem:
    id: int
    date: datetime
    amount: Decimal
    reference: str
    reason: CashOutReason
    store: str
    company: str
    reason_detail: str


@dataclass
class CashOutMetrics:
    """Metrics document returned by :func:`compute_cash_out_metrics`."""

    total_cash_out: Decimal = ZERO
    transaction_count: int = 0
    by_reason: List[CashOutReasonTotal] = field(default_factory=list)
    breakdown: List[CashOutBreakdown] = field(default_factory=list)
    recent_transactions: List[CashOutItem] = field(default_factory=list)


def cash_out_reason(movement: data_manager.CashMovementRow) -> CashOutReason:
    return classify_cash_out_reason(f"{movement.label} {movement.narration or ''}")


def journal_name(movement: data_manager.CashMovementRow) -> str:
    return movement.journal.display_name if movement.journal is not None else UNKNOWN_JOURNAL_LABEL


def compute_cash_out_metrics(
    movements: Iterable[data_manager.CashMovementRow],
    window: DateWindow,
) -> CashOutMetrics:
    """Fold the till cash movements of ``window`` into the no-sale report.

    Only money leaving a till (negative amounts) counts; every figure uses
    the absolute amount. Each movement gets one reason from its label and
    narration, and the till journal stands in for the store.

    Args:
        movements (Iterable[CashMovementRow]): Cash movements of every till.
        window (DateWindow): Reporting window on the movement date.

    Returns:
        CashOutMetrics: Totals, one entry per reason in table order, the
            non-empty reason/store pairs by total descending, and the 20 most
            recent cash-outs.
    """

    cash_outs = sorted(
        (movement for movement in movements if movement.amount < 0 and window.contains(movement.date)),
        key=lambda movement: (movement.date, movement.movement_id),
        reverse=True,
    )

    metrics = CashOutMetrics()
    by_reason = {reason: CashOutReasonTotal(reason=reason) for reason in CashOutReason}
    breakdown: Dict[tuple[CashOutReason, str], CashOutBreakdown] = {}
    items: List[CashOutItem] = []

    for movement in cash_outs:
        amount = abs(movement.amount)
        reason = cash_out_reason(movement)
        store = journal_name(movement)
        metrics.total_cash_out += amount
        metrics.transaction_count += 1

        reason_total = by_reason[reason]
        reason_total.total += amount
        reason_total.count += 1

        entry = breakdown.setdefault((reason, store), CashOutBreakdown(reason=reason, store=store))
        entry.total += amount
        entry.count += 1

        items.append(
            CashOutItem(
                id=movement.movement_id,
                date=movement.date,
                amount=amount,
                reference=movement.narration or movement.label,
                reason=reason,
                store=store,
                company=movement.company.display_name if movement.company is not None else UNKNOWN_COMPANY_LABEL,
                reason_detail=movement.narration or "",
            )
        )

    metrics.by_reason = list(by_reason.values())
    metrics.breakdown = sorted(breakdown.values(), key=lambda entry: entry.total, reverse=True)
    metrics.recent_transactions = items[:RECENT_CASH_OUTS_LIMIT]

    log.debug(
        "Computed cash-out metrics: movements=%d total=%s pairs=%d",
        metrics.transaction_count,
        metrics.total_cash_out,
        len(metrics.breakdown),
    )
    return metrics
