"""
Service: Participant Lifecycle (pengurusan peserta)
korban/services/participant_service.py

Removal has two levels:
- archive  soft delete (archived_at), payments and credit kept for audit.
           The participant still exists for the integrity scan.
- purge    hard delete of the participant, its payment rows and its change
           requests. Only with confirm=True; `purge_preview` shows what would
           go first. The credit account and the audit log are retained.

Detail changes requested by a participant wait for an admin:

    submit_change_request → pending → approve_change_request (applied)
                                    → reject_change_request  (nothing applied)

Every applied field change writes one audit_logs row (old → new).
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from korban.config import LedgerConfig
from korban.models import (
    AuditAction,
    AuditLog,
    ChangeRequestStatus,
    Group,
    Participant,
    ParticipantChangeRequest,
    Payment,
    ParticipantCredit,
)
from korban.services.document_store import Collection, commit
from korban.services.errors import UnknownChangeRequest, UnknownParticipant, ValidationError
from korban.services.installment_schedule import KORBAN_SUNAT, SACRIFICE_TYPES, to_amount

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "phone", "email", "sacrifice_type", "group_id")
# Group placement stays an admin decision
REQUESTABLE_FIELDS = ("name", "phone", "email", "sacrifice_type")

ADMIN = "admin"


def _audit_value(value) -> Optional[str]:
    return None if value is None else str(value)


class ParticipantService:

    def __init__(self, db: Session, config: LedgerConfig):
        self.db = db
        self.config = config
        self.groups = Collection(db, Group)
        self.participants = Collection(db, Participant)
        self.payments = Collection(db, Payment)
        self.credits = Collection(db, ParticipantCredit)
        self.change_requests = Collection(db, ParticipantChangeRequest)
        self.audit = Collection(db, AuditLog)

    # ── Validation ────────────────────────────────────────────────────────────

    def _require(self, participant_id: int) -> Participant:
        participant = self.participants.get(participant_id)
        if not participant:
            raise UnknownParticipant(participant_id)
        return participant

    def _check_fields(self, data: Dict) -> None:
        if "name" in data and not (data["name"] or "").strip():
            raise ValidationError("Participant name is required")
        if "sacrifice_type" in data and data["sacrifice_type"] not in SACRIFICE_TYPES:
            raise ValidationError(f"Unknown sacrifice type '{data['sacrifice_type']}'")
        if data.get("group_id") is not None and not self.groups.get(data["group_id"]):
            raise ValidationError(f"Group {data['group_id']} not found")

    def _log(self, participant_id: int, action: AuditAction, performed_by: str, **fields) -> None:
        """Stage one audit row; the caller's commit writes it."""
        entry = {
            "participant_id": participant_id,
            "action": action.value,
            "performed_by": performed_by,
            "performed_at": self.config.now(),
        }
        entry.update(fields)
        self.audit.create(entry, commit_now=False)

    # ═════════════════════════════════════════════════════════════════════════
    # GROUPS / PARTICIPANTS
    # ═════════════════════════════════════════════════════════════════════════

    def create_group(self, name: str) -> int:
        if not (name or "").strip():
            raise ValidationError("Group name is required")
        group_id = self.groups.create({"name": name.strip()})
        logger.info(f"Group #{group_id} created: {name}")
        return group_id

    def create_participant(
        self,
        name: str,
        group_id: Optional[int] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        sacrifice_type: str = KORBAN_SUNAT,
    ) -> int:
        data = {
            "name": name,
            "group_id": group_id,
            "phone": phone,
            "email": email,
            "sacrifice_type": sacrifice_type or KORBAN_SUNAT,
        }
        self._check_fields(data)
        data["name"] = name.strip()
        participant_id = self.participants.create(data)
        logger.info(f"Participant #{participant_id} created: {data['name']} ({data['sacrifice_type']})")
        return participant_id

    def update_participant(
        self,
        participant_id: int,
        partial: Dict,
        performed_by: str = ADMIN,
        action: AuditAction = AuditAction.DETAIL_UPDATED,
        request_id: Optional[int] = None,
        commit_now: bool = True,
    ) -> Participant:
        """
        Only EDITABLE_FIELDS are applied. A sacrifice type change moves the
        tariff used from now on; stored payment amounts are not rewritten.
        Each field whose value actually changes gets an audit row.
        """
        participant = self._require(participant_id)
        data = {k: v for k, v in partial.items() if k in EDITABLE_FIELDS}
        self._check_fields(data)
        if "name" in data:
            data["name"] = data["name"].strip()

        for field in sorted(data):
            old = getattr(participant, field)
            if old == data[field]:
                continue
            self._log(
                participant_id, action, performed_by,
                field=field,
                old_value=_audit_value(old),
                new_value=_audit_value(data[field]),
                request_id=request_id,
            )
        self.participants.update(participant_id, data, commit_now=commit_now)
        logger.info(f"Participant #{participant_id} updated by {performed_by}: {sorted(data)}")
        return participant

    def archive_participant(self, participant_id: int, performed_by: str = ADMIN) -> Participant:
        participant = self._require(participant_id)
        if participant.archived_at is not None:
            return participant
        self.participants.update(participant_id, {"archived_at": self.config.now()}, commit_now=False)
        self._log(participant_id, AuditAction.ARCHIVED, performed_by)
        commit(self.db)
        logger.info(f"Participant #{participant_id} archived ({participant.name})")
        return participant

    def restore_participant(self, participant_id: int, performed_by: str = ADMIN) -> Participant:
        participant = self._require(participant_id)
        if participant.archived_at is None:
            return participant
        self.participants.update(participant_id, {"archived_at": None}, commit_now=False)
        self._log(participant_id, AuditAction.RESTORED, performed_by)
        commit(self.db)
        logger.info(f"Participant #{participant_id} restored")
        return participant

    # ═════════════════════════════════════════════════════════════════════════
    # CHANGE REQUESTS (participant asks, admin decides)
    # ═════════════════════════════════════════════════════════════════════════

    def _require_request(self, request_id: int) -> ParticipantChangeRequest:
        request = self.change_requests.get(request_id)
        if not request:
            raise UnknownChangeRequest(request_id)
        return request

    def _require_pending(self, request_id: int) -> ParticipantChangeRequest:
        request = self._require_request(request_id)
        if request.status != ChangeRequestStatus.PENDING.value:
            raise ValidationError(f"Change request {request_id} is already {request.status}")
        return request

    def submit_change_request(
        self,
        participant_id: int,
        changes: Dict,
        requested_by: str,
        notes: Optional[str] = None,
    ) -> int:
        self._require(participant_id)
        data = {k: v for k, v in (changes or {}).items() if k in REQUESTABLE_FIELDS}
        if not data:
            raise ValidationError(f"No changeable fields requested (allowed: {', '.join(REQUESTABLE_FIELDS)})")
        if not (requested_by or "").strip():
            raise ValidationError("requested_by is required")
        self._check_fields(data)

        request_id = self.change_requests.create({
            "participant_id": participant_id,
            "requested_by": requested_by,
            "requested_at": self.config.now(),
            "changes": data,
            "status": ChangeRequestStatus.PENDING.value,
            "notes": notes,
        }, commit_now=False)
        self._log(
            participant_id, AuditAction.DETAIL_CHANGE_REQUESTED, requested_by,
            request_id=request_id,
            new_value=", ".join(sorted(data)),
            notes=notes,
        )
        commit(self.db)
        logger.info(f"Change request #{request_id} for participant #{participant_id}: {sorted(data)}")
        return request_id

    def get_pending_change_requests(self) -> List[ParticipantChangeRequest]:
        """Oldest first, the order an admin works through them."""
        return self.change_requests.query(status=ChangeRequestStatus.PENDING.value)

    def get_change_requests(self, participant_id: int) -> List[ParticipantChangeRequest]:
        self._require(participant_id)
        return self.change_requests.query(participant_id=participant_id)

    def approve_change_request(self, request_id: int, approved_by: str = ADMIN) -> Participant:
        """Apply the requested fields and close the request, one commit."""
        request = self._require_pending(request_id)
        participant = self.update_participant(
            request.participant_id,
            dict(request.changes),
            performed_by=approved_by,
            action=AuditAction.DETAIL_CHANGE_APPROVED,
            request_id=request_id,
            commit_now=False,
        )
        self.change_requests.update(request_id, {
            "status": ChangeRequestStatus.APPROVED.value,
            "approved_by": approved_by,
            "approved_at": self.config.now(),
        }, commit_now=False)
        commit(self.db)
        logger.info(f"Change request #{request_id} approved by {approved_by}")
        return participant

    def reject_change_request(self, request_id: int, rejected_by: str = ADMIN,
                              notes: Optional[str] = None) -> ParticipantChangeRequest:
        request = self._require_pending(request_id)
        self.change_requests.update(request_id, {
            "status": ChangeRequestStatus.REJECTED.value,
            "approved_by": rejected_by,
            "approved_at": self.config.now(),
            "notes": notes if notes is not None else request.notes,
        }, commit_now=False)
        self._log(
            request.participant_id, AuditAction.DETAIL_CHANGE_REJECTED, rejected_by,
            request_id=request_id,
            notes=notes,
        )
        commit(self.db)
        logger.info(f"Change request #{request_id} rejected by {rejected_by}")
        return request

    def get_audit_log(self, participant_id: int) -> List[AuditLog]:
        """Newest first. Works for purged participants too."""
        return (
            self.db.query(AuditLog)
            .filter(AuditLog.participant_id == participant_id)
            .order_by(AuditLog.performed_at.desc(), AuditLog.id.desc())
            .all()
        )

    # ═════════════════════════════════════════════════════════════════════════
    # PURGE (destructive)
    # ═════════════════════════════════════════════════════════════════════════

    def purge_preview(self, participant_id: int) -> Dict:
        participant = self._require(participant_id)
        payments = self.payments.query(participant_id=participant_id)
        account = self.credits.first(participant_id=participant_id)
        return {
            "participant_id": participant_id,
            "name": participant.name,
            "payments": len(payments),
            "paid_months": sorted({p.month for p in payments if p.is_paid}),
            "change_requests": len(self.change_requests.query(participant_id=participant_id)),
            "credit_balance": float(to_amount(account.credit_balance)) if account else 0.0,
            "credit_transactions": len(account.transactions) if account else 0,
            "credit_retained": True,
        }

    def purge_participant(self, participant_id: int, confirm: bool = False,
                          performed_by: str = ADMIN) -> Dict:
        """
        Hard delete participant + payments + change requests, one commit.
        The credit account and its transactions stay: they record money
        actually received.
        """
        preview = self.purge_preview(participant_id)
        if not confirm:
            logger.warning(f"Purge of participant #{participant_id} refused: not confirmed")
            raise ValidationError("Purge requires explicit confirmation (confirm=True)")

        for payment in self.payments.query(participant_id=participant_id):
            self.payments.delete(payment.id, commit_now=False)
        for request in self.change_requests.query(participant_id=participant_id):
            self.change_requests.delete(request.id, commit_now=False)
        self.participants.delete(participant_id, commit_now=False)
        self._log(
            participant_id, AuditAction.PURGED, performed_by,
            old_value=preview["name"],
            notes=f"{preview['payments']} payments removed, credit {preview['credit_balance']:.2f} retained",
        )
        commit(self.db)

        logger.info(
            f"Participant #{participant_id} purged: {preview['payments']} payments; "
            f"credit account kept ({preview['credit_transactions']} transactions)"
        )
        return preview
