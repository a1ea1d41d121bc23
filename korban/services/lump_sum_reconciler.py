"""
Service: Multi-Month Reconciler (bayaran pukal)
korban/services/lump_sum_reconciler.py

A single receipt can pay several installments at once. Two steps:

1. Book the WHOLE amount received as credit (source of truth for cash).
2. Spend credit month by month, in the order given. Every successful
   usage marks that month paid in the payment ledger in the same commit.
   The first refusal (not enough credit left) stops the loop: a month is
   never half-paid.

    credit_delta = total_amount - len(months) × tariff
      > 0  leftover carried forward as credit
      < 0  shortfall, fewer months marked than requested

Months are processed strictly sequentially: each usage checks the balance
left by the previous one.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from korban.config import LedgerConfig
from korban.services.credit_account import CreditAccount
from korban.services.document_store import commit
from korban.services.errors import InvalidAmount, InvalidMonth, ValidationError
from korban.services.installment_schedule import to_amount
from korban.services.payment_store import PaymentRecordStore

logger = logging.getLogger(__name__)


@dataclass
class LumpSumResult:
    participant_id: int
    months_marked_paid: int
    credit_delta: Decimal
    summary: str
    paid_months: List[str] = field(default_factory=list)
    unpaid_months: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "participant_id": self.participant_id,
            "months_marked_paid": self.months_marked_paid,
            "credit_delta": float(self.credit_delta),
            "summary": self.summary,
            "paid_months": self.paid_months,
            "unpaid_months": self.unpaid_months,
        }


class LumpSumReconciler:

    def __init__(
        self,
        db: Session,
        config: LedgerConfig,
        payments: Optional[PaymentRecordStore] = None,
        credit: Optional[CreditAccount] = None,
    ):
        self.db = db
        self.config = config
        self.payments = payments or PaymentRecordStore(db, config)
        self.credit = credit or CreditAccount(db, config)

    def process_lump_sum(
        self,
        participant_id: int,
        total_amount,
        target_months: Sequence[str],
        source_ref: Optional[str] = None,
    ) -> LumpSumResult:
        # ── Validate before touching anything ─────────────────────────────────
        participant = self.payments.require_participant(participant_id)

        try:
            total_amount = to_amount(total_amount)
        except ValueError:
            raise InvalidAmount(total_amount, "not a number") from None
        if total_amount <= 0:
            raise InvalidAmount(total_amount)

        target_months = list(target_months)
        if not target_months:
            raise ValidationError("At least one target month is required")
        for month in target_months:
            if not self.payments.schedule.contains(month):
                raise InvalidMonth(month)
        if len(set(target_months)) != len(target_months):
            raise ValidationError("Target months must not repeat")

        standard_amount = to_amount(self.payments.tariff_of(participant))
        total_needed = standard_amount * len(target_months)

        # ── 1. All cash in as credit ──────────────────────────────────────────
        self.credit.add_credit(
            participant_id,
            total_amount,
            source_ref,
            f"Payment for {len(target_months)} months ({', '.join(target_months)})",
        )

        # ── 2. Spend credit per month, in order ───────────────────────────────
        paid_months = []
        for month in target_months:
            used = self.credit.use_credit(
                participant_id,
                standard_amount,
                month,
                f"Monthly payment for {month}",
                commit_now=False,
            )
            if not used:
                break

            self.payments.upsert_payment(
                participant_id,
                month,
                standard_amount,
                is_paid=True,
                paid_date=self.config.now(),
                notes=f"Lump sum {source_ref}" if source_ref else None,
                commit_now=False,
            )
            commit(self.db)
            paid_months.append(month)

        credit_delta = total_amount - total_needed
        result = LumpSumResult(
            participant_id=participant_id,
            months_marked_paid=len(paid_months),
            credit_delta=credit_delta,
            summary=self._summary(len(paid_months), credit_delta),
            paid_months=paid_months,
            unpaid_months=[m for m in target_months if m not in paid_months],
        )
        logger.info(f"Lump sum participant {participant_id} (ref {source_ref}): {result.summary}")
        return result

    def _summary(self, created: int, delta: Decimal) -> str:
        if delta > 0:
            return f"{created} payments created, {self.config.money(delta)} credit remaining"
        if delta < 0:
            return f"{created} payments created, {self.config.money(abs(delta))} shortfall"
        return f"{created} payments created, exact amount"
