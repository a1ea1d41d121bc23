"""
Service: Status Calculator (status bayaran bulanan)
korban/services/status_calculator.py

Pure functions: payments + today + schedule (+ credit balance) → one status
per scheduled month. Single authority for "is this month settled": the
raw ledger (Payment.is_paid) and rollover credit are merged here, and every
caller (dashboard, public portal, exports, reminders) reads the result.

    paid               a payment row for the month has is_paid = True
    covered_by_credit  unpaid, but among the first N unpaid months where
                       N = floor(credit_balance / tariff)
    overdue            unpaid, month started n ≥ 1 whole months ago
    pending            unpaid, current month or still in the future

overdue_months = (current.year*12 + current.month) - (m.year*12 + m.month),
clamped to 0 for future months. Future months are never overdue.
Coverage is informational: it never flips Payment.is_paid.
"""

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from korban.services.installment_schedule import (
    InstallmentSchedule,
    months_between,
    period_label,
    period_of,
    to_amount,
)

ZERO = Decimal("0")


class StatusKind(str, enum.Enum):
    PAID = "paid"
    COVERED_BY_CREDIT = "covered_by_credit"
    OVERDUE = "overdue"
    PENDING = "pending"


# Display tiers (UI): 1 month late → warning, 2+ → critical
TIER_NONE = "none"
TIER_WARNING = "warning"
TIER_CRITICAL = "critical"


def overdue_months(month: str, current_month: str) -> int:
    return max(0, months_between(month, current_month))


def overdue_tier(months: int) -> str:
    if months >= 2:
        return TIER_CRITICAL
    if months == 1:
        return TIER_WARNING
    return TIER_NONE


def calculate_prepaid_months(balance, tariff) -> int:
    tariff = to_amount(tariff)
    balance = to_amount(balance or 0)
    if tariff <= 0 or balance <= 0:
        return 0
    return int(balance // tariff)


@dataclass
class MonthStatus:
    month: str
    kind: StatusKind
    overdue_months: int
    is_paid: bool
    is_future: bool
    amount_due: Decimal
    payment_id: Optional[int] = None

    @property
    def label(self) -> str:
        return period_label(self.month)

    @property
    def tier(self) -> str:
        if self.kind == StatusKind.OVERDUE:
            return overdue_tier(self.overdue_months)
        return TIER_NONE

    @property
    def status_text(self) -> str:
        if self.kind == StatusKind.PAID:
            return "Sudah Bayar"
        if self.kind == StatusKind.COVERED_BY_CREDIT:
            return "Dilindungi Kredit"
        if self.kind == StatusKind.OVERDUE:
            return f"Terlepas {self.overdue_months} bulan"
        return "Belum Bayar"

    def to_dict(self) -> Dict:
        return {
            "month": self.month,
            "label": self.label,
            "status": self.kind.value,
            "status_text": self.status_text,
            "overdue_months": self.overdue_months,
            "tier": self.tier,
            "is_paid": self.is_paid,
            "is_future": self.is_future,
            "amount_due": float(self.amount_due),
            "payment_id": self.payment_id,
        }


@dataclass
class ParticipantStatus:
    participant_id: int
    tariff: Decimal
    credit_balance: Decimal
    months: List[MonthStatus] = field(default_factory=list)

    def _count(self, kind: StatusKind) -> int:
        return sum(1 for m in self.months if m.kind == kind)

    @property
    def paid_count(self) -> int:
        return self._count(StatusKind.PAID)

    @property
    def covered_count(self) -> int:
        return self._count(StatusKind.COVERED_BY_CREDIT)

    @property
    def overdue_count(self) -> int:
        return self._count(StatusKind.OVERDUE)

    @property
    def prepaid_months(self) -> int:
        return calculate_prepaid_months(self.credit_balance, self.tariff)

    @property
    def completion_rate(self) -> float:
        """Paid installments as a percentage of the schedule."""
        if not self.months:
            return 0.0
        return round(self.paid_count / len(self.months) * 100, 1)

    @property
    def total_owed(self) -> Decimal:
        return sum((m.amount_due for m in self.months if not m.is_paid), ZERO)

    @property
    def total_owed_after_credit(self) -> Decimal:
        return max(ZERO, self.total_owed - self.credit_balance)

    @property
    def next_due_month(self) -> Optional[str]:
        """First month still to be paid once credit coverage is applied."""
        for m in self.months:
            if m.kind in (StatusKind.OVERDUE, StatusKind.PENDING):
                return m.month
        return None

    @property
    def progress(self) -> str:
        """Dashboard filter bucket: completed, overdue or pending."""
        if self.months and self.paid_count == len(self.months):
            return "completed"
        if self.overdue_count > 0:
            return "overdue"
        return "pending"

    def to_dict(self) -> Dict:
        return {
            "participant_id": self.participant_id,
            "tariff": float(self.tariff),
            "credit_balance": float(self.credit_balance),
            "prepaid_months": self.prepaid_months,
            "months": [m.to_dict() for m in self.months],
            "paid_count": self.paid_count,
            "covered_count": self.covered_count,
            "overdue_count": self.overdue_count,
            "completion_rate": self.completion_rate,
            "total_owed": float(self.total_owed),
            "total_owed_after_credit": float(self.total_owed_after_credit),
            "next_due_month": self.next_due_month,
            "progress": self.progress,
        }


def calculate_month_statuses(
    payments: Iterable,
    today: date,
    schedule: InstallmentSchedule,
    tariff,
    credit_balance=0,
) -> List[MonthStatus]:
    """
    One MonthStatus per scheduled month, in schedule order.

    `payments` are the participant's rows (anything with month / is_paid /
    id). Several rows for the same month count as paid if any of them is.
    """
    tariff = to_amount(tariff)
    current = period_of(today)

    paid_rows: Dict[str, object] = {}
    for p in payments:
        if p.is_paid and p.month not in paid_rows:
            paid_rows[p.month] = p

    covers_left = calculate_prepaid_months(credit_balance, tariff)
    statuses = []
    for month in schedule.months:
        is_future = months_between(current, month) > 0
        late = overdue_months(month, current)
        row = paid_rows.get(month)

        if row is not None:
            kind, late = StatusKind.PAID, 0
        elif covers_left > 0:
            kind = StatusKind.COVERED_BY_CREDIT
            covers_left -= 1
        elif late >= 1:
            kind = StatusKind.OVERDUE
        else:
            kind = StatusKind.PENDING

        statuses.append(MonthStatus(
            month=month,
            kind=kind,
            overdue_months=late,
            is_paid=row is not None,
            is_future=is_future,
            amount_due=tariff,
            payment_id=getattr(row, "id", None),
        ))
    return statuses


def calculate_participant_status(
    participant_id: int,
    payments: Iterable,
    today: date,
    schedule: InstallmentSchedule,
    tariff,
    credit_balance=0,
) -> ParticipantStatus:
    return ParticipantStatus(
        participant_id=participant_id,
        tariff=to_amount(tariff),
        credit_balance=to_amount(credit_balance or 0),
        months=calculate_month_statuses(payments, today, schedule, tariff, credit_balance),
    )
