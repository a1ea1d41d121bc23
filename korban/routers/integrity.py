"""
Router: Ledger Integrity (diagnostik)
korban/routers/integrity.py

Endpoints:
    GET  /scan      → Findings as JSON (read-only)
    GET  /report    → Same findings, plain-text report
    POST /cleanup   → DESTRUCTIVE: delete duplicate rows, keep the first
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from korban.config import LedgerConfig, get_config
from korban.database import get_db
from korban.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/integrity", tags=["integrity"])


@router.get("/scan")
async def integrity_scan(
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    return LedgerService(db, config).run_integrity_scan().to_dict()


@router.get("/report", response_class=PlainTextResponse)
async def integrity_report(
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    report = LedgerService(db, config).run_integrity_scan()
    return report.render(config.money)


@router.post("/cleanup")
async def integrity_cleanup(
    db: Session = Depends(get_db),
    config: LedgerConfig = Depends(get_config),
):
    """Scan, then remove every duplicate found. Other findings are left for manual review."""
    service = LedgerService(db, config)
    groups = service.run_integrity_scan().duplicates
    removed = service.cleanup_duplicates(groups)
    logger.info(f"Admin cleanup: {removed} duplicate rows removed")
    return {
        "success": True,
        "groups": len(groups),
        "removed": removed,
        "remaining_issues": service.run_integrity_scan().total_issues,
    }
