"""
Router: Ledger (bayaran & kredit)
korban/routers/ledger.py

Endpoints:
  STATUS:
    GET  /participants/{id}/status   → Status per month + aggregates
    GET  /participants/{id}/credit   → Balance + transaction log
    GET  /progress                   → All participants (filter: completed/overdue/pending)

  PAYMENTS:
    POST /payments/toggle            → Mark one month paid/unpaid
    POST /payments/bulk              → Same month, many participants
    POST /lump-sum                   → One receipt, several months (via credit)

  CREDIT:
    POST /credit/adjust              → Admin adjustment (+)

  SUMMARY:
    GET  /summary/overview           → Dashboard totals
    GET  /summary/groups?month=      → Per group for one month
    GET  /summary/months             → Per scheduled month
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from korban.config import LedgerConfig, get_config
from korban.database import get_db
from korban.routers.common import http_error
from korban.services.errors import ValidationError
from korban.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ledger", tags=["ledger"])


# ══════════════════════════════════════════════════════════
# SCHEMAS
# ══════════════════════════════════════════════════════════

class TogglePaymentRequest(BaseModel):
    participant_id: int
    month: str                      # '2025-08'
    paid: bool


class BulkPaymentRequest(BaseModel):
    participant_ids: List[int]
    month: str
    paid: bool = True


class LumpSumRequest(BaseModel):
    participant_id: int
    total_amount: Decimal
    target_months: List[str]        # processed in this order
    source_ref: Optional[str] = None  # receipt id


class CreditAdjustRequest(BaseModel):
    participant_id: int
    amount: Decimal
    description: str = "Pelarasan admin"


def _service(db: Session, config: LedgerConfig) -> LedgerService:
    return LedgerService(db, config)


# ══════════════════════════════════════════════════════════
# STATUS
# ══════════════════════════════════════════════════════════

@router.get("/participants/{participant_id}/status")
async def participant_status(
    participant_id: int,
    today: Optional[date] = None,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    """Per-month status (paid / covered_by_credit / overdue / pending)."""
    try:
        status = _service(db, config).get_status(participant_id, today)
    except ValidationError as e:
        raise http_error(e)
    return status.to_dict()


@router.get("/participants/{participant_id}/credit")
async def participant_credit(
    participant_id: int,
    today: Optional[date] = None,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        return _service(db, config).get_credit(participant_id, today)
    except ValidationError as e:
        raise http_error(e)


@router.get("/progress")
async def participant_progress(
    status: Optional[str] = Query(None, description="completed | overdue | pending"),
    group_id: Optional[int] = None,
    today: Optional[date] = None,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        rows = _service(db, config).participant_progress(today, status, group_id)
    except ValidationError as e:
        raise http_error(e)
    return {"total": len(rows), "participants": rows}


# ══════════════════════════════════════════════════════════
# PAYMENTS
# ══════════════════════════════════════════════════════════

@router.post("/payments/toggle")
async def toggle_payment(
    body: TogglePaymentRequest,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        payment_id = _service(db, config).set_paid(body.participant_id, body.month, body.paid)
    except ValidationError as e:
        raise http_error(e)
    return {
        "success": True,
        "payment_id": payment_id,
        "participant_id": body.participant_id,
        "month": body.month,
        "paid": body.paid,
    }


@router.post("/payments/bulk")
async def bulk_payments(
    body: BulkPaymentRequest,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        changed = _service(db, config).bulk_set_paid(body.participant_ids, body.month, body.paid)
    except ValidationError as e:
        raise http_error(e)
    return {"success": True, "month": body.month, "changed": changed}


@router.post("/lump-sum")
async def lump_sum(
    body: LumpSumRequest,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    """All cash in as credit, then one month at a time until credit runs out."""
    try:
        result = _service(db, config).process_lump_sum(
            body.participant_id, body.total_amount, body.target_months, body.source_ref
        )
    except ValidationError as e:
        raise http_error(e)
    return {"success": True, **result.to_dict()}


# ══════════════════════════════════════════════════════════
# CREDIT
# ══════════════════════════════════════════════════════════

@router.post("/credit/adjust")
async def adjust_credit(
    body: CreditAdjustRequest,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    try:
        check = _service(db, config).adjust_credit(body.participant_id, body.amount, body.description)
    except ValidationError as e:
        raise http_error(e)
    if not check["consistent"]:
        logger.error(f"Credit log mismatch for participant {body.participant_id}: {check}")
    return {
        "success": True,
        "participant_id": body.participant_id,
        "credit_balance": float(check["balance"]),
    }


# ══════════════════════════════════════════════════════════
# SUMMARY
# ══════════════════════════════════════════════════════════

@router.get("/summary/overview")
async def summary_overview(
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    return _service(db, config).overview()


@router.get("/summary/groups")
async def summary_groups(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    """Defaults to the current month when it is part of the schedule, else the first one."""
    if month is None:
        current = config.schedule.current_month(config.today())
        month = current if config.schedule.contains(current) else config.schedule.months[0]
    try:
        rows = _service(db, config).group_summary(month)
    except ValidationError as e:
        raise http_error(e)
    return {"month": month, "groups": rows}


@router.get("/summary/months")
async def summary_months(
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    return {"months": _service(db, config).monthly_summary()}
