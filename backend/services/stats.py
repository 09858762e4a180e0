import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from decimal import ROUND_HALF_UP, Decimal
from typing import TypedDict

from backend.config import DEFAULT_EVENT_CAPACITY
from database.store import EventRecord, RegistrationRecord, RegistrationStore, utc_now_iso

logger = logging.getLogger(__name__)


class EventStats(TypedDict):
    event_id: str
    total: int
    awaiting_check_in: int
    checked_in: int
    capacity: int
    available_spots: int
    occupancy_rate: int
    computed_at: str


def occupancy_rate(checked_in: int, capacity: int) -> int:
    if capacity <= 0:
        return 0
    percent = Decimal(checked_in) * 100 / Decimal(capacity)
    return int(percent.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_event_stats(event: EventRecord | None, registrations: list[RegistrationRecord]) -> EventStats:
    """Full-scan aggregate for one event. ``awaiting + checked_in == total`` always holds."""
    total = len(registrations)
    checked_in = sum(1 for reg in registrations if reg["checked_in"])
    if event is not None:
        capacity = int(event["capacity"])
        event_id = event["id"]
    else:
        capacity = DEFAULT_EVENT_CAPACITY
        event_id = registrations[0]["event_id"] if registrations else ""

    return {
        "event_id": event_id,
        "total": total,
        "awaiting_check_in": total - checked_in,
        "checked_in": checked_in,
        "capacity": capacity,
        "available_spots": max(0, capacity - total),
        "occupancy_rate": occupancy_rate(checked_in, capacity),
        "computed_at": utc_now_iso(),
    }


class StatsBoard:
    """
    Latest stats snapshot per event.

    Snapshots are recomputed from a full scan, either on demand or in the
    background after a successful check-in. Readers may see a briefly stale
    snapshot while a refresh is in flight, but a refresh that started earlier
    never overwrites the result of one that started later.
    """

    def __init__(self, store: RegistrationStore, *, max_workers: int = 2) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._snapshots: dict[str, EventStats] = {}
        self._started: dict[str, int] = {}
        self._stored: dict[str, int] = {}
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="stats-refresh")

    def refresh(self, event_id: str) -> EventStats:
        with self._lock:
            ticket = self._started.get(event_id, 0) + 1
            self._started[event_id] = ticket

        event = self._store.get_event(event_id)
        registrations = self._store.list_registrations(event_id)
        stats = compute_event_stats(event, registrations)
        stats["event_id"] = event_id
        with self._lock:
            # A refresh that started later may already have stored newer numbers.
            if ticket > self._stored.get(event_id, 0):
                self._snapshots[event_id] = stats
                self._stored[event_id] = ticket
            else:
                logger.debug("Dropped stale stats refresh %s for event %s", ticket, event_id)
        return stats

    def _refresh_quietly(self, event_id: str) -> None:
        try:
            self.refresh(event_id)
        except Exception:
            logger.exception("Background stats refresh failed for event %s", event_id)

    def schedule_refresh(self, event_id: str) -> Future:
        return self._executor.submit(self._refresh_quietly, event_id)

    def snapshot(self, event_id: str) -> EventStats | None:
        with self._lock:
            stats = self._snapshots.get(event_id)
            return dict(stats) if stats else None  # type: ignore[return-value]

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
