from fastapi import APIRouter, Depends, HTTPException

from backend.config import (
    ALERT_ROLES,
    BARE_ID_MIN_LENGTH,
    CHECKIN_TIMEOUT_SECONDS,
    CONNECT_HOSTS,
    CONNECT_URL_BASE,
    DB_PATH,
    DEFAULT_EVENT_CAPACITY,
    DISCORD_WEBHOOK_URL,
    ENABLE_DEBUG_ENDPOINTS,
    NOTIFY_TIMEOUT_SECONDS,
    SLACK_WEBHOOK_URL,
    STORE_BACKEND,
)
from backend.security import SessionClaims, require_session

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_session: SessionClaims = Depends(require_session)):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH), "store_backend": STORE_BACKEND}


@router.get("/config/checkin")
def checkin_config(_session: SessionClaims = Depends(require_session)):
    return {
        "store_backend": STORE_BACKEND,
        "connect_url_base": CONNECT_URL_BASE,
        "connect_hosts": CONNECT_HOSTS,
        "bare_id_min_length": BARE_ID_MIN_LENGTH,
        "default_event_capacity": DEFAULT_EVENT_CAPACITY,
        "checkin_timeout_seconds": CHECKIN_TIMEOUT_SECONDS,
        "notify_timeout_seconds": NOTIFY_TIMEOUT_SECONDS,
        "alert_roles": sorted(ALERT_ROLES),
        "slack_enabled": bool(SLACK_WEBHOOK_URL),
        "discord_enabled": bool(DISCORD_WEBHOOK_URL),
    }
