"""
Service: Payment Record Store
korban/services/payment_store.py

One payment row per (participant, month). Every write goes through
`upsert_payment`, which looks the key up first and overwrites in place:
repeating a call with the same key never creates a second row.

The store never touches the credit account. Single-month admin toggles and
receipt-driven lump sums share this primitive; booking credit is the
reconciler's job, so nothing is counted twice.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from korban.config import LedgerConfig
from korban.models import Participant, Payment
from korban.services.document_store import Collection, commit
from korban.services.errors import InvalidAmount, InvalidMonth, UnknownParticipant
from korban.services.installment_schedule import to_amount

logger = logging.getLogger(__name__)


class PaymentRecordStore:
    """Idempotent create/update of payment rows."""

    def __init__(self, db: Session, config: LedgerConfig):
        self.db = db
        self.config = config
        self.schedule = config.schedule
        self.payments = Collection(db, Payment)
        self.participants = Collection(db, Participant)

    # ── Lookups ───────────────────────────────────────────────────────────────

    def find(self, participant_id: int, month: str) -> Optional[Payment]:
        return self.payments.first(participant_id=participant_id, month=month)

    def get_payments(self, participant_id: int) -> List[Payment]:
        """Rows of one participant, ordered by month."""
        rows = self.payments.query(participant_id=participant_id)
        return sorted(rows, key=lambda p: p.month)

    def get_payments_by_month(self, month: str) -> List[Payment]:
        return self.payments.query(month=month)

    def all_payments(self) -> List[Payment]:
        return self.payments.all()

    def require_participant(self, participant_id: int) -> Participant:
        participant = self.participants.get(participant_id)
        if not participant:
            raise UnknownParticipant(participant_id)
        return participant

    def tariff_of(self, participant: Participant) -> int:
        return self.schedule.tariff_for(participant.sacrifice_type)

    # ── Commands ──────────────────────────────────────────────────────────────

    def upsert_payment(
        self,
        participant_id: int,
        month: str,
        amount,
        is_paid: bool,
        paid_date: Optional[datetime] = None,
        notes: Optional[str] = None,
        commit_now: bool = True,
    ) -> int:
        """
        Create or overwrite the row for (participant_id, month).

        Raises:
            InvalidMonth:  month outside the installment schedule
            InvalidAmount: paid with amount <= 0, or a negative amount
        """
        if not self.schedule.contains(month):
            raise InvalidMonth(month)

        try:
            amount = to_amount(amount)
        except ValueError:
            raise InvalidAmount(amount, "not a number") from None
        if is_paid and amount <= 0:
            raise InvalidAmount(amount)
        if amount < 0:
            raise InvalidAmount(amount, "amount cannot be negative")

        if is_paid:
            paid_date = paid_date or self.config.now()
        else:
            paid_date = None

        data = {
            "amount": amount,
            "is_paid": is_paid,
            "paid_date": paid_date,
        }
        if notes is not None:
            data["notes"] = notes

        existing = self.find(participant_id, month)
        if existing:
            self.payments.update(existing.id, data, commit_now=False)
            payment_id = existing.id
        else:
            payment_id = self.payments.create(
                {"participant_id": participant_id, "month": month, **data},
                commit_now=False,
            )

        if commit_now:
            commit(self.db)

        logger.info(
            f"Payment #{payment_id} upserted: participant {participant_id} {month} "
            f"{self.config.money(amount)} paid={is_paid}"
        )
        return payment_id

    def set_paid(
        self,
        participant_id: int,
        month: str,
        paid: bool,
        commit_now: bool = True,
    ) -> Optional[int]:
        """
        Toggle a month paid/unpaid keeping the stored amount.

        A new row takes the participant's current tariff. Marking unpaid a
        month that has no row is a no-op and returns None.
        """
        if not self.schedule.contains(month):
            raise InvalidMonth(month)
        participant = self.require_participant(participant_id)

        existing = self.find(participant_id, month)
        if existing is None and not paid:
            return None

        amount = existing.amount if existing and existing.amount else self.tariff_of(participant)
        return self.upsert_payment(
            participant_id, month, amount, is_paid=paid, commit_now=commit_now
        )

    def bulk_set_paid(self, participant_ids: Iterable[int], month: str, paid: bool) -> int:
        """
        Apply set_paid to many participants in one commit.
        Returns how many rows were written.
        """
        if not self.schedule.contains(month):
            raise InvalidMonth(month)

        # Validate everything before the first write
        ids = list(dict.fromkeys(participant_ids))
        for participant_id in ids:
            self.require_participant(participant_id)

        changed = 0
        for participant_id in ids:
            if self.set_paid(participant_id, month, paid, commit_now=False) is not None:
                changed += 1
        commit(self.db)

        logger.info(f"Bulk {'paid' if paid else 'unpaid'} for {month}: {changed}/{len(ids)} rows")
        return changed
