import logging
import threading

from backend.config import DB_PATH, STORE_BACKEND
from backend.services.checkin import CheckInService
from backend.services.notifications import NotificationFanout, build_default_channels
from database.db import SqliteRegistrationStore
from database.memory import InMemoryRegistrationStore
from database.store import RegistrationStore

logger = logging.getLogger(__name__)

_STATE_LOCK = threading.Lock()
_STORE: RegistrationStore | None = None
_SERVICE: CheckInService | None = None


def build_store(backend: str = STORE_BACKEND) -> RegistrationStore:
    if backend == "memory":
        logger.info("Using in-memory registration directory")
        return InMemoryRegistrationStore()
    if backend != "sqlite":
        raise ValueError(f"Unknown DOORCHECK_STORE_BACKEND: {backend!r}")
    return SqliteRegistrationStore(DB_PATH)


def get_store() -> RegistrationStore:
    global _STORE
    with _STATE_LOCK:
        if _STORE is None:
            _STORE = build_store()
        return _STORE


def get_checkin_service() -> CheckInService:
    global _SERVICE
    store = get_store()
    with _STATE_LOCK:
        if _SERVICE is None:
            _SERVICE = CheckInService(store, notifier=NotificationFanout(build_default_channels()))
        return _SERVICE


def reset_services() -> None:
    """Drop the process-wide store and service (used on shutdown)."""
    global _STORE, _SERVICE
    with _STATE_LOCK:
        service, _SERVICE, _STORE = _SERVICE, None, None
    if service is not None:
        service.shutdown(wait=False)
