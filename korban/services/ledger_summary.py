"""
Service: Ledger Summary (ringkasan kutipan)
korban/services/ledger_summary.py

Read-only aggregates for the admin dashboard:
- overview          totals across all active participants
- group summary     one row per group for a given month
- monthly summary   one row per scheduled month
- progress          per-participant status list, filterable

Expected amounts use each participant's own tariff. A (participant, month)
is counted once even if legacy duplicate rows exist; duplicates are the
integrity scan's business.
"""

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from korban.config import LedgerConfig
from korban.models import Group, Participant, Payment, ParticipantCredit
from korban.services.errors import InvalidMonth, ValidationError
from korban.services.installment_schedule import period_label, to_amount
from korban.services.status_calculator import calculate_participant_status

ZERO = Decimal("0")
PROGRESS_FILTERS = ("completed", "overdue", "pending")


class LedgerSummary:

    def __init__(self, db: Session, config: LedgerConfig):
        self.db = db
        self.config = config
        self.schedule = config.schedule

    # ── Loading ───────────────────────────────────────────────────────────────

    def _active_participants(self) -> List[Participant]:
        return (
            self.db.query(Participant)
            .filter(Participant.archived_at.is_(None))
            .order_by(Participant.id)
            .all()
        )

    def _paid_by_key(self, month: Optional[str] = None) -> Dict[tuple, Payment]:
        """First paid row per (participant_id, month)."""
        q = self.db.query(Payment).filter(Payment.is_paid.is_(True))
        if month:
            q = q.filter(Payment.month == month)
        paid = {}
        for p in q.order_by(Payment.id).all():
            paid.setdefault((p.participant_id, p.month), p)
        return paid

    def _tariff(self, participant: Participant) -> Decimal:
        return to_amount(self.schedule.tariff_for(participant.sacrifice_type))

    def _row(self, participants: List[Participant], paid: Dict[tuple, Payment], month: str) -> Dict:
        paid_count = 0
        collected = ZERO
        expected = ZERO
        for participant in participants:
            expected += self._tariff(participant)
            row = paid.get((participant.id, month))
            if row is not None:
                paid_count += 1
                collected += to_amount(row.amount)

        total = len(participants)
        return {
            "participants": total,
            "paid": paid_count,
            "unpaid": total - paid_count,
            "percentage": round(paid_count / total * 100, 1) if total else 0.0,
            "collected": float(collected),
            "expected": float(expected),
            "balance": float(expected - collected),
        }

    # ═════════════════════════════════════════════════════════════════════════
    # QUERIES
    # ═════════════════════════════════════════════════════════════════════════

    def overview(self) -> Dict:
        participants = self._active_participants()
        active_ids = {p.id for p in participants}
        paid = self._paid_by_key()

        total_expected = sum((self._tariff(p) * len(self.schedule) for p in participants), ZERO)
        total_collected = sum(
            (to_amount(row.amount) for (pid, _), row in paid.items() if pid in active_ids),
            ZERO,
        )
        credits = [
            c for c in self.db.query(ParticipantCredit).all() if c.participant_id in active_ids
        ]
        total_credit = sum((to_amount(c.credit_balance) for c in credits), ZERO)

        return {
            "total_participants": len(participants),
            "total_groups": self.db.query(Group).count(),
            "total_expected": float(total_expected),
            "total_collected": float(total_collected),
            "collection_rate": (
                round(float(total_collected / total_expected * 100), 1) if total_expected else 0.0
            ),
            "total_credit_balance": float(total_credit),
            "participants_with_credit": sum(1 for c in credits if to_amount(c.credit_balance) > 0),
        }

    def group_summary(self, month: str) -> List[Dict]:
        """One row per group for `month`; ungrouped participants come last."""
        if not self.schedule.contains(month):
            raise InvalidMonth(month)

        participants = self._active_participants()
        paid = self._paid_by_key(month)

        rows = []
        for group in self.db.query(Group).order_by(Group.name, Group.id).all():
            members = [p for p in participants if p.group_id == group.id]
            rows.append({"group_id": group.id, "group_name": group.name, "month": month,
                         **self._row(members, paid, month)})

        ungrouped = [p for p in participants if p.group_id is None]
        if ungrouped:
            rows.append({"group_id": None, "group_name": "Tanpa Kumpulan", "month": month,
                         **self._row(ungrouped, paid, month)})
        return rows

    def monthly_summary(self) -> List[Dict]:
        participants = self._active_participants()
        paid = self._paid_by_key()
        return [
            {"month": month, "label": period_label(month), **self._row(participants, paid, month)}
            for month in self.schedule.months
        ]

    def participant_progress(
        self,
        today: Optional[date] = None,
        status_filter: Optional[str] = None,
        group_id: Optional[int] = None,
    ) -> List[Dict]:
        """Status of every active participant (optionally one group / one bucket)."""
        if status_filter and status_filter not in PROGRESS_FILTERS:
            raise ValidationError(f"Unknown status filter '{status_filter}'")
        today = today or self.config.today()

        participants = self._active_participants()
        if group_id is not None:
            participants = [p for p in participants if p.group_id == group_id]

        payments_by_pid: Dict[int, List[Payment]] = {}
        for p in self.db.query(Payment).order_by(Payment.id).all():
            payments_by_pid.setdefault(p.participant_id, []).append(p)
        balances = {
            c.participant_id: to_amount(c.credit_balance)
            for c in self.db.query(ParticipantCredit).all()
        }

        result = []
        for participant in participants:
            status = calculate_participant_status(
                participant.id,
                payments_by_pid.get(participant.id, []),
                today,
                self.schedule,
                self._tariff(participant),
                balances.get(participant.id, ZERO),
            )
            if status_filter and status.progress != status_filter:
                continue
            result.append({
                "participant_id": participant.id,
                "name": participant.name,
                "group_id": participant.group_id,
                "sacrifice_type": participant.sacrifice_type,
                "paid_count": status.paid_count,
                "covered_count": status.covered_count,
                "overdue_count": status.overdue_count,
                "completion_rate": status.completion_rate,
                "total_owed_after_credit": float(status.total_owed_after_credit),
                "next_due_month": status.next_due_month,
                "progress": status.progress,
            })
        return result
