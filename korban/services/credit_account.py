"""
Service: Credit Account (saldo kredit peserta)
korban/services/credit_account.py

Each participant has at most one account, created lazily on the first
credit event, holding a running balance and an append-only log:

    payment    (+)  money received (receipt / lump sum)
    usage      (-)  one installment settled from credit
    adjustment (+)  admin correction

INVARIANT: credit_balance == SUM(transactions.amount).

Balance and the new log row are written under a row lock on the account and
committed together, so a failed write leaves neither behind. An account
never goes below zero: a usage larger than the balance is refused with a
plain False (insufficient credit is a normal outcome, not an error).
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from korban.config import LedgerConfig
from korban.models import CreditTransaction, CreditTransactionType, Participant, ParticipantCredit
from korban.services.document_store import Collection, commit
from korban.services.errors import InvalidAmount, InvalidMonth, UnknownParticipant
from korban.services.installment_schedule import KORBAN_SUNAT, InstallmentSchedule, month_index, to_amount
from korban.services.status_calculator import calculate_prepaid_months

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class CreditAccount:

    def __init__(self, db: Session, config: LedgerConfig):
        self.db = db
        self.config = config
        self.schedule = config.schedule
        self.credits = Collection(db, ParticipantCredit)
        self.participants = Collection(db, Participant)

    # ═════════════════════════════════════════════════════════════════════════
    # READS
    # ═════════════════════════════════════════════════════════════════════════

    def get_account(self, participant_id: int) -> Optional[ParticipantCredit]:
        return self.credits.first(participant_id=participant_id)

    def get_balance(self, participant_id: int) -> Decimal:
        """0 when the participant has no account yet."""
        account = self.get_account(participant_id)
        return to_amount(account.credit_balance) if account else ZERO

    def get_transactions(self, participant_id: int) -> List[CreditTransaction]:
        account = self.get_account(participant_id)
        return list(account.transactions) if account else []

    def get_all_credits(self) -> List[ParticipantCredit]:
        return self.credits.all()

    def verify_balance(self, participant_id: int) -> Dict:
        """Balance vs. sum of the log. `consistent` must always be True."""
        balance = self.get_balance(participant_id)
        logged = sum((to_amount(t.amount) for t in self.get_transactions(participant_id)), ZERO)
        return {
            "participant_id": participant_id,
            "balance": balance,
            "logged_total": logged,
            "consistent": balance == logged,
        }

    # ═════════════════════════════════════════════════════════════════════════
    # COMMANDS
    # ═════════════════════════════════════════════════════════════════════════

    def add_credit(
        self,
        participant_id: int,
        amount,
        source_ref: Optional[str],
        description: str,
        commit_now: bool = True,
    ) -> None:
        """Book money received as a `payment` entry (+amount)."""
        amount = self._positive(amount)
        self._require_participant(participant_id)
        self._book(
            participant_id, amount, CreditTransactionType.PAYMENT, description,
            receipt_id=source_ref, commit_now=commit_now,
        )
        logger.info(
            f"Credit +{self.config.money(amount)} for participant {participant_id} "
            f"(ref {source_ref}): {description}"
        )

    def adjust_credit(self, participant_id: int, amount, description: str) -> None:
        """Admin correction, booked as an `adjustment` entry (+amount)."""
        amount = self._positive(amount)
        self._require_participant(participant_id)
        self._book(participant_id, amount, CreditTransactionType.ADJUSTMENT, description)
        logger.info(f"Credit adjustment +{self.config.money(amount)} for participant {participant_id}")

    def use_credit(
        self,
        participant_id: int,
        amount,
        month: Optional[str],
        description: str,
        commit_now: bool = True,
    ) -> bool:
        """
        Spend credit on one installment.

        Returns False, with no mutation, when the balance is below `amount`
        (or there is no account yet).
        """
        amount = self._positive(amount)
        self._require_participant(participant_id)
        if month is not None and not self.schedule.contains(month):
            raise InvalidMonth(month)
        booked = self._book(
            participant_id, amount, CreditTransactionType.USAGE, description,
            month=month, commit_now=commit_now,
        )
        if booked:
            logger.info(f"Credit -{self.config.money(amount)} for participant {participant_id} ({month})")
        else:
            logger.warning(
                f"Insufficient credit: participant {participant_id} needs "
                f"{self.config.money(amount)} for {month}, has {self.config.money(self.get_balance(participant_id))}"
            )
        return booked

    # ═════════════════════════════════════════════════════════════════════════
    # PURE HELPERS
    # ═════════════════════════════════════════════════════════════════════════

    def calculate_prepaid_months(self, balance, tariff=None) -> int:
        """floor(balance / monthly tariff); never negative."""
        if tariff is None:
            tariff = self.schedule.tariff_for(KORBAN_SUNAT)
        return calculate_prepaid_months(balance, tariff)

    def get_next_unpaid_month(
        self,
        balance,
        current_month: str,
        schedule: Optional[InstallmentSchedule] = None,
        tariff=None,
    ) -> Optional[str]:
        """
        Credit rolls forward from `current_month`: skip the months it prepays
        and return the one after. None once that runs past the schedule.
        Before the cycle starts: the first installment. After it ends: None.
        """
        if schedule is None:
            schedule = self.schedule
        current_index = schedule.index_of(current_month)
        if current_index == -1:
            if month_index(current_month) > month_index(schedule.months[-1]):
                return None
            return schedule.months[0]

        next_index = current_index + self.calculate_prepaid_months(balance, tariff) + 1
        return schedule.months[next_index] if next_index < len(schedule) else None

    # ═════════════════════════════════════════════════════════════════════════
    # INTERNALS
    # ═════════════════════════════════════════════════════════════════════════

    def _positive(self, amount) -> Decimal:
        try:
            amount = to_amount(amount)
        except ValueError:
            raise InvalidAmount(amount, "not a number") from None
        if amount <= 0:
            raise InvalidAmount(amount)
        return amount

    def _require_participant(self, participant_id: int) -> None:
        if not self.participants.get(participant_id):
            raise UnknownParticipant(participant_id)

    def _book(
        self,
        participant_id: int,
        amount: Decimal,
        tx_type: CreditTransactionType,
        description: str,
        receipt_id: Optional[str] = None,
        month: Optional[str] = None,
        commit_now: bool = True,
    ) -> bool:
        """
        Append one entry and move the balance, under the account row lock.
        Usage entries are stored negated.
        """
        is_usage = tx_type == CreditTransactionType.USAGE
        try:
            account = self.credits.lock(participant_id=participant_id)

            if account is None:
                if is_usage:
                    return False
                account_id = self.credits.create(
                    {"participant_id": participant_id, "credit_balance": ZERO},
                    commit_now=False,
                )
                account = self.credits.get(account_id)
                logger.info(f"Credit account created for participant {participant_id}")

            balance = to_amount(account.credit_balance or 0)
            if is_usage and balance < amount:
                return False

            signed = -amount if is_usage else amount
            account.transactions.append(CreditTransaction(
                participant_id=participant_id,
                date=self.config.now(),
                amount=signed,
                type=tx_type.value,
                receipt_id=receipt_id,
                month=month,
                description=description,
            ))
            account.credit_balance = balance + signed
            account.last_updated = self.config.now()
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Credit {tx_type.value} failed for participant {participant_id}: {e}")
            raise

        if commit_now:
            commit(self.db)
        return True
