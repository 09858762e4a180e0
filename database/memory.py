import threading

from database.store import (
    CheckInMethod,
    ConditionalWriteResult,
    EventRecord,
    RegistrationRecord,
    ScanEventRecord,
    ScanOutcome,
    StoreUnavailable,
    normalize_email,
    utc_now_iso,
)


def _copy_event(event: EventRecord) -> EventRecord:
    copied = dict(event)
    copied["speakers"] = list(event["speakers"])
    return copied  # type: ignore[return-value]


def _copy_registration(registration: RegistrationRecord) -> RegistrationRecord:
    return dict(registration)  # type: ignore[return-value]


class InMemoryRegistrationStore:
    """
    Process-local directory used by tests and by ``DOORCHECK_STORE_BACKEND=memory``.

    A single lock guards every read and write so the compare-and-set in
    ``conditional_set_checked_in`` behaves like the sqlite ``UPDATE ... WHERE``.
    Set ``offline = True`` to simulate an unreachable directory.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: dict[str, EventRecord] = {}
        self._registrations: dict[tuple[str, str], RegistrationRecord] = {}
        self._scan_events: list[ScanEventRecord] = []
        self.offline = False

    def _ensure_online(self) -> None:
        if self.offline:
            raise StoreUnavailable("Registration directory is offline.")

    def add_event(self, event: EventRecord) -> None:
        with self._lock:
            self._ensure_online()
            self._events[event["id"]] = _copy_event(event)

    def add_registration(self, registration: RegistrationRecord) -> None:
        key = (registration["event_id"], registration["user_id"])
        with self._lock:
            self._ensure_online()
            if key in self._registrations:
                raise ValueError("User is already registered for this event.")
            self._registrations[key] = _copy_registration(registration)

    def get_event(self, event_id: str) -> EventRecord | None:
        with self._lock:
            self._ensure_online()
            event = self._events.get(event_id)
            return _copy_event(event) if event else None

    def list_registrations(self, event_id: str) -> list[RegistrationRecord]:
        with self._lock:
            self._ensure_online()
            return [
                _copy_registration(reg)
                for (reg_event_id, _), reg in self._registrations.items()
                if reg_event_id == event_id
            ]

    def get_registration(self, event_id: str, user_id: str) -> RegistrationRecord | None:
        with self._lock:
            self._ensure_online()
            reg = self._registrations.get((event_id, user_id))
            return _copy_registration(reg) if reg else None

    def find_registration_by_email(self, event_id: str, email: str) -> RegistrationRecord | None:
        wanted = normalize_email(email)
        if not wanted:
            return None
        with self._lock:
            self._ensure_online()
            for (reg_event_id, _), reg in self._registrations.items():
                if reg_event_id == event_id and normalize_email(reg["email"]) == wanted:
                    return _copy_registration(reg)
        return None

    def conditional_set_checked_in(
        self,
        event_id: str,
        user_id: str,
        actor_id: str,
        *,
        checked_in_at: str,
        expected_checked_in: bool = False,
    ) -> ConditionalWriteResult:
        with self._lock:
            self._ensure_online()
            reg = self._registrations.get((event_id, user_id))
            if reg is None:
                return {"applied": False, "current": None}
            if reg["checked_in"] != expected_checked_in:
                return {"applied": False, "current": _copy_registration(reg)}

            reg["checked_in"] = True
            reg["checked_in_at"] = checked_in_at
            reg["checked_in_by"] = actor_id
            reg["status"] = "attended"
            return {"applied": True, "current": _copy_registration(reg)}

    def cancel_registration(self, event_id: str, user_id: str) -> bool:
        with self._lock:
            self._ensure_online()
            reg = self._registrations.get((event_id, user_id))
            if reg is None or reg["checked_in"]:
                return False
            del self._registrations[(event_id, user_id)]
            return True

    def record_scan_event(
        self,
        *,
        event_id: str | None,
        user_id: str | None,
        actor_id: str | None,
        outcome: ScanOutcome,
        method: CheckInMethod,
        role: str | None,
        message: str,
    ) -> int:
        with self._lock:
            self._ensure_online()
            scan_event_id = len(self._scan_events) + 1
            self._scan_events.append(
                {
                    "id": scan_event_id,
                    "event_id": event_id,
                    "user_id": user_id,
                    "actor_id": actor_id,
                    "outcome": outcome,
                    "method": method,
                    "role": role,
                    "message": message,
                    "created_at": utc_now_iso(),
                }
            )
            return scan_event_id

    def list_scan_events(
        self,
        event_id: str,
        *,
        outcome: ScanOutcome | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ScanEventRecord]:
        with self._lock:
            self._ensure_online()
            rows = [
                dict(row)
                for row in reversed(self._scan_events)
                if row["event_id"] == event_id and (outcome is None or row["outcome"] == outcome)
            ]
        return rows[offset : offset + limit]  # type: ignore[return-value]
