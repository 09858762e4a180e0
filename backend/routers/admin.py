from typing import cast

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.dependencies import get_checkin_service
from backend.security import require_admin
from backend.services.checkin import CheckInService
from database.store import ScanOutcome, StoreError

router = APIRouter(dependencies=[Depends(require_admin)])
ALLOWED_OUTCOMES: set[str] = {
    "success",
    "already-checked",
    "not-found",
    "invalid-qr",
    "error",
}


@router.get("/events/{event_id}/scan-events")
def list_scan_events(
    event_id: str,
    outcome: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: CheckInService = Depends(get_checkin_service),
):
    clean_outcome = outcome.strip() if outcome else None
    if clean_outcome and clean_outcome not in ALLOWED_OUTCOMES:
        raise HTTPException(status_code=400, detail="Invalid outcome filter.")

    try:
        rows = service.list_scan_events(
            event_id,
            outcome=cast(ScanOutcome | None, clean_outcome),
            limit=limit,
            offset=offset,
        )
    except StoreError:
        raise HTTPException(status_code=503, detail="Registration directory unavailable. Please retry.")
    return {
        "rows": rows,
        "limit": limit,
        "offset": offset,
    }


@router.delete("/events/{event_id}/registrations/{user_id}")
def cancel_registration(
    event_id: str,
    user_id: str,
    service: CheckInService = Depends(get_checkin_service),
):
    try:
        outcome = service.cancel_registration(event_id, user_id)
    except StoreError:
        raise HTTPException(status_code=503, detail="Registration directory unavailable. Please retry.")

    if outcome == "not-found":
        raise HTTPException(status_code=404, detail="Registration not found.")
    if outcome == "checked-in":
        raise HTTPException(status_code=409, detail="Registration is already checked in and cannot be cancelled.")
    return {"ok": True, "message": "Registration cancelled"}
