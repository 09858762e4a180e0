import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("DOORCHECK_DB_PATH", BASE_DIR / "database" / "doorcheck.db"))
STORE_BACKEND = (os.getenv("DOORCHECK_STORE_BACKEND", "sqlite").strip().lower() or "sqlite")
ADMIN_USERNAME = os.getenv("DOORCHECK_ADMIN_USERNAME", "admin").strip() or "admin"
ADMIN_PASSWORD = os.getenv("DOORCHECK_ADMIN_PASSWORD", "admin123").strip() or "admin123"
SIGNING_KEY = os.getenv("DOORCHECK_SIGNING_KEY", "").strip() or secrets.token_urlsafe(32)
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("DOORCHECK_AUTH_TOKEN_TTL_SECONDS", "43200"))
LOG_LEVEL = os.getenv("DOORCHECK_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_float(value: str | None, fallback: float, *, minimum: float = 0.0) -> float:
    if not value:
        return fallback
    try:
        parsed = float(value)
    except ValueError:
        return fallback
    return max(minimum, parsed)


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("DOORCHECK_CORS_ALLOW_ORIGINS"),
    ["http://localhost:5173", "http://127.0.0.1:5173"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("DOORCHECK_CORS_ALLOW_METHODS"),
    ["GET", "POST", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("DOORCHECK_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("DOORCHECK_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("DOORCHECK_ENABLE_DEBUG_ENDPOINTS"), False)

# QR payloads
CONNECT_URL_BASE = (
    os.getenv("DOORCHECK_CONNECT_URL_BASE", "https://winengrind.com/connect").strip().rstrip("/")
    or "https://winengrind.com/connect"
)
CONNECT_HOSTS = [
    host.lower()
    for host in _parse_csv(os.getenv("DOORCHECK_CONNECT_HOSTS"), ["winengrind.com", "www.winengrind.com"])
]
BARE_ID_MIN_LENGTH = max(1, int(os.getenv("DOORCHECK_BARE_ID_MIN_LENGTH", "11")))

# Check-in engine
DEFAULT_EVENT_CAPACITY = max(0, int(os.getenv("DOORCHECK_DEFAULT_EVENT_CAPACITY", "100")))
CHECKIN_TIMEOUT_SECONDS = _parse_float(os.getenv("DOORCHECK_CHECKIN_TIMEOUT_SECONDS"), 5.0, minimum=0.1)
SQLITE_BUSY_TIMEOUT_SECONDS = _parse_float(os.getenv("DOORCHECK_SQLITE_BUSY_TIMEOUT_SECONDS"), 5.0)

# Arrival alerts
SLACK_WEBHOOK_URL = os.getenv("DOORCHECK_SLACK_WEBHOOK_URL", "").strip()
DISCORD_WEBHOOK_URL = os.getenv("DOORCHECK_DISCORD_WEBHOOK_URL", "").strip()
NOTIFY_TIMEOUT_SECONDS = _parse_float(os.getenv("DOORCHECK_NOTIFY_TIMEOUT_SECONDS"), 3.0, minimum=0.1)
NOTIFY_USERNAME = os.getenv("DOORCHECK_NOTIFY_USERNAME", "Wine & Grind Check-in").strip() or "Wine & Grind Check-in"
ALERT_ROLES = {role.lower() for role in _parse_csv(os.getenv("DOORCHECK_ALERT_ROLES"), ["vip", "speaker"])}
