from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from backend.dependencies import get_checkin_service
from backend.security import SessionClaims, require_actor, require_session
from backend.services.checkin import CheckInService, EventNotFound, RegistrationNotFound, ScanResult
from database.store import StoreError

router = APIRouter()


class ScanRequest(BaseModel):
    payload: str
    event_id: str | None = None


class ManualCheckInRequest(BaseModel):
    event_id: str
    user_id: str


def _scan_response(result: ScanResult):
    # Retryable failures must not look like "not registered" to the door UI.
    if result["type"] == "error":
        return JSONResponse(status_code=503, content=result)
    return result


@router.post("/checkin/scan")
def scan_checkin(
    payload: ScanRequest,
    actor_id: str = Depends(require_actor),
    service: CheckInService = Depends(get_checkin_service),
):
    result = service.scan(payload.payload, payload.event_id, actor_id)
    return _scan_response(result)


@router.post("/checkin/manual")
def manual_checkin(
    payload: ManualCheckInRequest,
    actor_id: str = Depends(require_actor),
    service: CheckInService = Depends(get_checkin_service),
):
    event_id = payload.event_id.strip()
    user_id = payload.user_id.strip()
    if not event_id or not user_id:
        raise HTTPException(status_code=400, detail="event_id and user_id are required.")

    result = service.manual_check_in(event_id, user_id, actor_id)
    return _scan_response(result)


@router.get("/events/{event_id}/lookup")
def lookup_by_email(
    event_id: str,
    email: str,
    _session: SessionClaims = Depends(require_session),
    service: CheckInService = Depends(get_checkin_service),
):
    if not email.strip():
        raise HTTPException(status_code=400, detail="Email is required.")

    result = service.find_by_email(event_id, email)
    if result["status"] == "error":
        return JSONResponse(status_code=503, content=result)
    return result


@router.get("/events/{event_id}/stats")
def event_stats(
    event_id: str,
    cached: bool = False,
    _session: SessionClaims = Depends(require_session),
    service: CheckInService = Depends(get_checkin_service),
):
    try:
        return service.get_stats(event_id, cached=cached)
    except EventNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except StoreError:
        raise HTTPException(status_code=503, detail="Registration directory unavailable. Please retry.")


@router.get("/events/{event_id}/door-list")
def door_list(
    event_id: str,
    role: str = Query(default="all"),
    _session: SessionClaims = Depends(require_session),
    service: CheckInService = Depends(get_checkin_service),
):
    try:
        return service.get_door_list(event_id, role)
    except EventNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except StoreError:
        raise HTTPException(status_code=503, detail="Registration directory unavailable. Please retry.")


@router.get("/events/{event_id}/registrations/{user_id}/codes")
def registration_codes(
    event_id: str,
    user_id: str,
    _session: SessionClaims = Depends(require_session),
    service: CheckInService = Depends(get_checkin_service),
):
    try:
        return service.registration_codes(event_id, user_id)
    except RegistrationNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except StoreError:
        raise HTTPException(status_code=503, detail="Registration directory unavailable. Please retry.")
