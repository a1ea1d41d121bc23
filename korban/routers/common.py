"""
Shared router helpers: engine errors → HTTP.
korban/routers/common.py
"""

from fastapi import HTTPException

from korban.services.errors import UnknownChangeRequest, UnknownParticipant, ValidationError


def http_error(e: ValidationError) -> HTTPException:
    """Unknown participant or change request → 404, any other validation problem → 400."""
    if isinstance(e, (UnknownParticipant, UnknownChangeRequest)):
        return HTTPException(status_code=404, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))
