"""
Service: Ledger Integrity Analyzer (diagnostik data)
korban/services/ledger_integrity.py

Detection is read-only and safe to run at any time:
- duplicates   more than one payment row for (participant, month)
- suspicious   amount differs from the participant's own tariff
- orphaned     participant_id with no participant row (archived still counts)

Cleanup is a separate, explicit admin command. The analyzer never deletes.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from korban.services.document_store import Collection, commit
from korban.services.installment_schedule import InstallmentSchedule, to_amount

logger = logging.getLogger(__name__)


@dataclass
class DuplicatePaymentGroup:
    participant_id: int
    month: str
    payments: List = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "participant_id": self.participant_id,
            "month": self.month,
            "payment_ids": [p.id for p in self.payments],
            "count": len(self.payments),
        }


@dataclass
class SuspiciousAmount:
    payment: object
    expected: Decimal

    def to_dict(self) -> Dict:
        return {
            "payment_id": self.payment.id,
            "participant_id": self.payment.participant_id,
            "month": self.payment.month,
            "amount": float(to_amount(self.payment.amount)),
            "expected": float(self.expected),
        }


@dataclass
class OrphanedPayment:
    payment: object

    def to_dict(self) -> Dict:
        return {
            "payment_id": self.payment.id,
            "participant_id": self.payment.participant_id,
            "month": self.payment.month,
        }


@dataclass
class IntegrityReport:
    duplicates: List[DuplicatePaymentGroup] = field(default_factory=list)
    suspicious: List[SuspiciousAmount] = field(default_factory=list)
    orphaned: List[OrphanedPayment] = field(default_factory=list)

    @property
    def total_issues(self) -> int:
        return len(self.duplicates) + len(self.suspicious) + len(self.orphaned)

    def to_dict(self) -> Dict:
        return {
            "total_issues": self.total_issues,
            "duplicates": [d.to_dict() for d in self.duplicates],
            "suspicious": [s.to_dict() for s in self.suspicious],
            "orphaned": [o.to_dict() for o in self.orphaned],
        }

    def render(self, money=None) -> str:
        """Plain-text report for the admin screen / export."""
        money = money or (lambda amount: f"RM{amount}")
        lines = ["=== DATA ANALYSIS REPORT ===", "", f"Total Issues Found: {self.total_issues}", ""]

        if self.duplicates:
            lines.append(f"🔄 DUPLICATE PAYMENTS: {len(self.duplicates)}")
            for d in self.duplicates:
                lines.append(f"  - Participant {d.participant_id}, Month {d.month}: {len(d.payments)} payments")
            lines.append("")

        if self.suspicious:
            lines.append(f"💰 SUSPICIOUS AMOUNTS: {len(self.suspicious)}")
            for s in self.suspicious:
                lines.append(
                    f"  - Payment {s.payment.id}: {money(to_amount(s.payment.amount))} "
                    f"(expected {money(s.expected)})"
                )
            lines.append("")

        if self.orphaned:
            lines.append(f"👻 ORPHANED PAYMENTS: {len(self.orphaned)}")
            for o in self.orphaned:
                lines.append(f"  - Payment {o.payment.id}: Participant {o.payment.participant_id} not found")
            lines.append("")

        if self.total_issues == 0:
            lines.append("✅ No data issues detected!")

        return "\n".join(lines)


def analyze_ledger(
    payments: Iterable,
    participants: Iterable,
    schedule: InstallmentSchedule,
) -> IntegrityReport:
    """
    Pure scan over the full payment and participant sets.

    Groups keep first-appearance order, rows inside a group keep input order.
    Orphaned rows have no tariff to compare against and are never flagged
    as suspicious.
    """
    payments = list(payments)
    tariffs = {p.id: to_amount(schedule.tariff_for(p.sacrifice_type)) for p in participants}

    # ── Duplicates ────────────────────────────────────────────────────────────
    groups: Dict[tuple, List] = {}
    for payment in payments:
        groups.setdefault((payment.participant_id, payment.month), []).append(payment)
    duplicates = [
        DuplicatePaymentGroup(participant_id=pid, month=month, payments=rows)
        for (pid, month), rows in groups.items()
        if len(rows) > 1
    ]

    # ── Amounts / orphans ─────────────────────────────────────────────────────
    suspicious, orphaned = [], []
    for payment in payments:
        expected = tariffs.get(payment.participant_id)
        if expected is None:
            orphaned.append(OrphanedPayment(payment=payment))
        elif to_amount(payment.amount) != expected:
            suspicious.append(SuspiciousAmount(payment=payment, expected=expected))

    return IntegrityReport(duplicates=duplicates, suspicious=suspicious, orphaned=orphaned)


def cleanup_duplicates(groups: Sequence[DuplicatePaymentGroup], payments: Collection) -> int:
    """
    Keep the first row of every group, delete the rest, one commit.
    Rows already gone (stale findings) are skipped. Returns rows removed.
    """
    removed = 0
    for group in groups:
        for payment in group.payments[1:]:
            try:
                payments.delete(payment.id, commit_now=False)
            except LookupError:
                logger.warning(f"Duplicate payment #{payment.id} already removed, skipping")
                continue
            removed += 1
            logger.info(
                f"Deleted duplicate payment #{payment.id} for participant "
                f"{group.participant_id} month {group.month}"
            )

    if removed:
        commit(payments.db)
    logger.info(f"Duplicate cleanup: {removed} rows removed from {len(groups)} groups")
    return removed
