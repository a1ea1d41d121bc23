"""
Service: Ledger (engine facade)
korban/services/ledger_service.py

Single entry point used by the routers, exports and reminder jobs.

Queries:   get_status · get_credit · run_integrity_scan · summaries
Commands:  set_paid · bulk_set_paid · process_lump_sum · adjust_credit ·
           cleanup_duplicates

Every collaborator shares one Session and one LedgerConfig.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from korban.config import LedgerConfig
from korban.services.credit_account import CreditAccount
from korban.services.ledger_integrity import (
    DuplicatePaymentGroup,
    IntegrityReport,
    analyze_ledger,
    cleanup_duplicates,
)
from korban.services.ledger_summary import LedgerSummary
from korban.services.lump_sum_reconciler import LumpSumReconciler, LumpSumResult
from korban.services.payment_store import PaymentRecordStore
from korban.services.status_calculator import ParticipantStatus, calculate_participant_status

logger = logging.getLogger(__name__)


class LedgerService:

    def __init__(self, db: Session, config: LedgerConfig):
        self.db = db
        self.config = config
        self.schedule = config.schedule
        self.payments = PaymentRecordStore(db, config)
        self.credit = CreditAccount(db, config)
        self.reconciler = LumpSumReconciler(db, config, self.payments, self.credit)
        self.summary = LedgerSummary(db, config)

    # ═════════════════════════════════════════════════════════════════════════
    # QUERIES
    # ═════════════════════════════════════════════════════════════════════════

    def get_status(self, participant_id: int, today: Optional[date] = None) -> ParticipantStatus:
        participant = self.payments.require_participant(participant_id)
        return calculate_participant_status(
            participant_id,
            self.payments.get_payments(participant_id),
            today or self.config.today(),
            self.schedule,
            self.payments.tariff_of(participant),
            self.credit.get_balance(participant_id),
        )

    def get_credit(self, participant_id: int, today: Optional[date] = None) -> Dict:
        participant = self.payments.require_participant(participant_id)
        tariff = self.payments.tariff_of(participant)
        balance = self.credit.get_balance(participant_id)
        current = self.schedule.current_month(today or self.config.today())

        return {
            "participant_id": participant_id,
            "credit_balance": float(balance),
            "prepaid_months": self.credit.calculate_prepaid_months(balance, tariff),
            "next_unpaid_month": self.credit.get_next_unpaid_month(balance, current, tariff=tariff),
            "transactions": [
                {
                    "id": t.id,
                    "date": t.date.isoformat() if t.date else None,
                    "amount": float(t.amount),
                    "type": t.type,
                    "receipt_id": t.receipt_id,
                    "month": t.month,
                    "description": t.description,
                }
                for t in self.credit.get_transactions(participant_id)
            ],
        }

    def run_integrity_scan(self) -> IntegrityReport:
        report = analyze_ledger(
            self.payments.all_payments(),
            self.payments.participants.all(),
            self.schedule,
        )
        if report.total_issues:
            logger.warning(
                f"Integrity scan: {report.total_issues} issues "
                f"({len(report.duplicates)} duplicates, {len(report.suspicious)} suspicious, "
                f"{len(report.orphaned)} orphaned)"
            )
        else:
            logger.info("Integrity scan: no issues")
        return report

    def group_summary(self, month: str) -> List[Dict]:
        return self.summary.group_summary(month)

    def monthly_summary(self) -> List[Dict]:
        return self.summary.monthly_summary()

    def overview(self) -> Dict:
        return self.summary.overview()

    def participant_progress(self, today: Optional[date] = None, status_filter: Optional[str] = None,
                             group_id: Optional[int] = None) -> List[Dict]:
        return self.summary.participant_progress(today, status_filter, group_id)

    # ═════════════════════════════════════════════════════════════════════════
    # COMMANDS
    # ═════════════════════════════════════════════════════════════════════════

    def set_paid(self, participant_id: int, month: str, paid: bool) -> Optional[int]:
        return self.payments.set_paid(participant_id, month, paid)

    def bulk_set_paid(self, participant_ids: Iterable[int], month: str, paid: bool) -> int:
        return self.payments.bulk_set_paid(participant_ids, month, paid)

    def process_lump_sum(
        self,
        participant_id: int,
        total_amount,
        target_months: Sequence[str],
        source_ref: Optional[str] = None,
    ) -> LumpSumResult:
        target_months = list(target_months)
        already_paid = []
        for month in target_months:
            row = self.payments.find(participant_id, month)
            if row is not None and row.is_paid:
                already_paid.append(month)
        if already_paid:
            logger.warning(
                f"Lump sum for participant {participant_id} targets months already paid: {already_paid}"
            )
        return self.reconciler.process_lump_sum(participant_id, total_amount, target_months, source_ref)

    def adjust_credit(self, participant_id: int, amount, description: str) -> Dict:
        self.credit.adjust_credit(participant_id, amount, description)
        return self.credit.verify_balance(participant_id)

    def cleanup_duplicates(self, groups: Optional[Sequence[DuplicatePaymentGroup]] = None) -> int:
        """Explicit, destructive. Without findings, scans first and cleans what it finds."""
        if groups is None:
            groups = self.run_integrity_scan().duplicates
        return cleanup_duplicates(groups, self.payments.payments)
