"""
Router: Peserta & Kumpulan
korban/routers/participants.py

Endpoints:
  GROUPS:
    GET    /groups                          → List
    POST   /groups                          → Create

  PARTICIPANTS:
    GET    /participants                    → List (?include_archived=true)
    POST   /participants                    → Create
    PATCH  /participants/{id}               → Update (name, phone, email, type, group)
    POST   /participants/{id}/archive       → Soft delete, payments kept
    POST   /participants/{id}/restore       → Undo archive
    GET    /participants/{id}/purge-preview → What a hard delete would remove
    DELETE /participants/{id}?confirm=true  → Hard delete (credit account kept)

  CHANGE REQUESTS:
    POST   /participants/{id}/change-requests → Participant asks for a detail change
    GET    /participants/{id}/change-requests → History for one participant
    GET    /change-requests                    → Admin queue (?status=pending)
    POST   /change-requests/{id}/approve       → Apply + close
    POST   /change-requests/{id}/reject        → Close, nothing applied

  AUDIT:
    GET    /participants/{id}/audit-log        → Newest first
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from korban.config import LedgerConfig, get_config
from korban.database import get_db
from korban.models import AuditLog, ChangeRequestStatus, Group, Participant, ParticipantChangeRequest
from korban.routers.common import http_error
from korban.services.errors import ValidationError
from korban.services.installment_schedule import KORBAN_SUNAT, SACRIFICE_TYPE_LABELS
from korban.services.participant_service import ParticipantService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["participants"])


# ══════════════════════════════════════════════════════════
# SCHEMAS
# ══════════════════════════════════════════════════════════

class GroupCreate(BaseModel):
    name: str                       # "Kumpulan 1"


class ParticipantCreate(BaseModel):
    name: str
    group_id: Optional[int] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    sacrifice_type: str = KORBAN_SUNAT  # korban_sunat, korban_nazar, aqiqah


class ParticipantUpdate(BaseModel):
    name: Optional[str] = None
    group_id: Optional[int] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    sacrifice_type: Optional[str] = None


class ChangeRequestCreate(BaseModel):
    requested_by: str               # participant phone / user
    changes: Dict[str, Any]         # {"phone": "...", "sacrifice_type": "aqiqah"}
    notes: Optional[str] = None


class ChangeRequestDecision(BaseModel):
    approved_by: str = "admin"
    notes: Optional[str] = None


def _participant_dict(p: Participant) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "group_id": p.group_id,
        "phone": p.phone,
        "email": p.email,
        "sacrifice_type": p.sacrifice_type,
        "sacrifice_label": SACRIFICE_TYPE_LABELS.get(p.sacrifice_type, p.sacrifice_type),
        "archived": not p.is_active,
    }


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _request_dict(r: ParticipantChangeRequest) -> dict:
    return {
        "id": r.id,
        "participant_id": r.participant_id,
        "requested_by": r.requested_by,
        "requested_at": _iso(r.requested_at),
        "changes": r.changes,
        "status": r.status,
        "approved_by": r.approved_by,
        "approved_at": _iso(r.approved_at),
        "notes": r.notes,
    }


def _audit_dict(a: AuditLog) -> dict:
    return {
        "id": a.id,
        "action": a.action,
        "performed_by": a.performed_by,
        "performed_at": _iso(a.performed_at),
        "field": a.field,
        "old_value": a.old_value,
        "new_value": a.new_value,
        "request_id": a.request_id,
        "notes": a.notes,
    }


# ══════════════════════════════════════════════════════════
# GROUPS
# ══════════════════════════════════════════════════════════

@router.get("/groups")
async def list_groups(db: Session = Depends(get_db)):
    groups = db.query(Group).order_by(Group.name, Group.id).all()
    return {"groups": [{"id": g.id, "name": g.name} for g in groups]}


@router.post("/groups")
async def create_group(
    body: GroupCreate,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        group_id = ParticipantService(db, config).create_group(body.name)
    except ValidationError as e:
        raise http_error(e)
    return {"success": True, "id": group_id}


# ══════════════════════════════════════════════════════════
# PARTICIPANTS
# ══════════════════════════════════════════════════════════

@router.get("/participants")
async def list_participants(
    include_archived: bool = False,
    group_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    query = db.query(Participant)
    if not include_archived:
        query = query.filter(Participant.archived_at.is_(None))
    if group_id is not None:
        query = query.filter(Participant.group_id == group_id)
    participants = query.order_by(Participant.name, Participant.id).all()
    return {"total": len(participants), "participants": [_participant_dict(p) for p in participants]}


@router.post("/participants")
async def create_participant(
    body: ParticipantCreate,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        participant_id = ParticipantService(db, config).create_participant(
            body.name, body.group_id, body.phone, body.email, body.sacrifice_type
        )
    except ValidationError as e:
        raise http_error(e)
    return {"success": True, "id": participant_id}


@router.patch("/participants/{participant_id}")
async def update_participant(
    participant_id: int,
    body: ParticipantUpdate,
    performed_by: str = "admin",
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        participant = ParticipantService(db, config).update_participant(
            participant_id, body.model_dump(exclude_unset=True), performed_by=performed_by
        )
    except ValidationError as e:
        raise http_error(e)
    return _participant_dict(participant)


@router.post("/participants/{participant_id}/archive")
async def archive_participant(
    participant_id: int,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        participant = ParticipantService(db, config).archive_participant(participant_id)
    except ValidationError as e:
        raise http_error(e)
    return _participant_dict(participant)


@router.post("/participants/{participant_id}/restore")
async def restore_participant(
    participant_id: int,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        participant = ParticipantService(db, config).restore_participant(participant_id)
    except ValidationError as e:
        raise http_error(e)
    return _participant_dict(participant)


@router.get("/participants/{participant_id}/purge-preview")
async def purge_preview(
    participant_id: int,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        return ParticipantService(db, config).purge_preview(participant_id)
    except ValidationError as e:
        raise http_error(e)


@router.delete("/participants/{participant_id}")
async def purge_participant(
    participant_id: int,
    confirm: bool = False,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    """Hard delete. Without ?confirm=true the request is refused (400)."""
    try:
        removed = ParticipantService(db, config).purge_participant(participant_id, confirm=confirm)
    except ValidationError as e:
        raise http_error(e)
    return {"success": True, "removed": removed}


# ══════════════════════════════════════════════════════════
# CHANGE REQUESTS
# ══════════════════════════════════════════════════════════

@router.post("/participants/{participant_id}/change-requests")
async def submit_change_request(
    participant_id: int,
    body: ChangeRequestCreate,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        request_id = ParticipantService(db, config).submit_change_request(
            participant_id, body.changes, body.requested_by, body.notes
        )
    except ValidationError as e:
        raise http_error(e)
    return {"success": True, "id": request_id, "status": ChangeRequestStatus.PENDING.value}


@router.get("/participants/{participant_id}/change-requests")
async def participant_change_requests(
    participant_id: int,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        requests = ParticipantService(db, config).get_change_requests(participant_id)
    except ValidationError as e:
        raise http_error(e)
    return {"total": len(requests), "requests": [_request_dict(r) for r in requests]}


@router.get("/change-requests")
async def list_change_requests(
    status: Optional[str] = ChangeRequestStatus.PENDING.value,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    """Admin queue. ?status=approved|rejected for history."""
    if status == ChangeRequestStatus.PENDING.value:
        requests = ParticipantService(db, config).get_pending_change_requests()
    else:
        query = db.query(ParticipantChangeRequest)
        if status:
            query = query.filter(ParticipantChangeRequest.status == status)
        requests = query.order_by(ParticipantChangeRequest.id).all()
    return {"total": len(requests), "requests": [_request_dict(r) for r in requests]}


@router.post("/change-requests/{request_id}/approve")
async def approve_change_request(
    request_id: int,
    body: ChangeRequestDecision,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        participant = ParticipantService(db, config).approve_change_request(request_id, body.approved_by)
    except ValidationError as e:
        raise http_error(e)
    return {"success": True, "participant": _participant_dict(participant)}


@router.post("/change-requests/{request_id}/reject")
async def reject_change_request(
    request_id: int,
    body: ChangeRequestDecision,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        request = ParticipantService(db, config).reject_change_request(
            request_id, body.approved_by, body.notes
        )
    except ValidationError as e:
        raise http_error(e)
    return {"success": True, "request": _request_dict(request)}


# ══════════════════════════════════════════════════════════
# AUDIT
# ══════════════════════════════════════════════════════════

@router.get("/participants/{participant_id}/audit-log")
async def participant_audit_log(
    participant_id: int,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    """Readable after a purge too: the log has no FK to participants."""
    entries = ParticipantService(db, config).get_audit_log(participant_id)
    return {"participant_id": participant_id, "total": len(entries), "entries": [_audit_dict(a) for a in entries]}
