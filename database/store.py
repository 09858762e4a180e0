"""
Registration directory contract.

The check-in engine only talks to storage through ``RegistrationStore``:
point reads, a full scan per event, and a conditional write on the
``checked_in`` flag. Implementations live in ``database/db.py`` (sqlite) and
``database/memory.py`` (in-process fake).
"""

from datetime import datetime, timezone
from typing import Literal, Protocol, TypedDict

EventStatus = Literal["active", "non-active", "sold-out", "completed"]
RegistrationStatus = Literal["registered", "attended"]
CheckInMethod = Literal["qr-scan", "manual"]
ScanOutcome = Literal["success", "already-checked", "not-found", "invalid-qr", "error"]


class StoreError(Exception):
    """Base class for directory failures."""


class StoreUnavailable(StoreError):
    """The directory could not be reached or did not answer in time. Safe to retry."""


class EventRecord(TypedDict):
    id: str
    name: str
    date: str | None
    location: str | None
    capacity: int
    status: EventStatus
    speakers: list[str]


class RegistrationRecord(TypedDict):
    event_id: str
    user_id: str
    name: str
    email: str
    phone: str | None
    work: str | None
    role: str | None
    badge_role: str | None
    ticket_type: str | None
    status: RegistrationStatus
    checked_in: bool
    checked_in_at: str | None
    checked_in_by: str | None
    registered_at: str | None


class ConditionalWriteResult(TypedDict):
    applied: bool
    # None when the registration disappeared between read and write.
    current: RegistrationRecord | None


class ScanEventRecord(TypedDict):
    id: int
    event_id: str | None
    user_id: str | None
    actor_id: str | None
    outcome: ScanOutcome
    method: CheckInMethod
    role: str | None
    message: str
    created_at: str


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


class RegistrationStore(Protocol):
    def get_event(self, event_id: str) -> EventRecord | None: ...

    def list_registrations(self, event_id: str) -> list[RegistrationRecord]: ...

    def get_registration(self, event_id: str, user_id: str) -> RegistrationRecord | None: ...

    def find_registration_by_email(self, event_id: str, email: str) -> RegistrationRecord | None: ...

    def conditional_set_checked_in(
        self,
        event_id: str,
        user_id: str,
        actor_id: str,
        *,
        checked_in_at: str,
        expected_checked_in: bool = False,
    ) -> ConditionalWriteResult: ...

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
    ) -> int: ...

    def list_scan_events(
        self,
        event_id: str,
        *,
        outcome: ScanOutcome | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ScanEventRecord]: ...

    def cancel_registration(self, event_id: str, user_id: str) -> bool: ...

    def add_event(self, event: EventRecord) -> None: ...

    def add_registration(self, registration: RegistrationRecord) -> None: ...


def new_registration(
    event_id: str,
    user_id: str,
    *,
    name: str,
    email: str,
    phone: str | None = None,
    work: str | None = None,
    role: str | None = None,
    badge_role: str | None = None,
    ticket_type: str | None = None,
    registered_at: str | None = None,
) -> RegistrationRecord:
    """Build a fresh, not-yet-checked-in registration record."""
    return {
        "event_id": event_id,
        "user_id": user_id,
        "name": name,
        "email": email,
        "phone": phone,
        "work": work,
        "role": role,
        "badge_role": badge_role,
        "ticket_type": ticket_type,
        "status": "registered",
        "checked_in": False,
        "checked_in_at": None,
        "checked_in_by": None,
        "registered_at": registered_at or utc_now_iso(),
    }


def new_event(
    event_id: str,
    *,
    name: str,
    capacity: int = 100,
    date: str | None = None,
    location: str | None = None,
    status: EventStatus = "active",
    speakers: list[str] | None = None,
) -> EventRecord:
    return {
        "id": event_id,
        "name": name,
        "date": date,
        "location": location,
        "capacity": capacity,
        "status": status,
        "speakers": list(speakers or []),
    }
