"""
Check-in state machine.

A registration moves ``registered -> attended`` at most once. The move is a
conditional write against the registration directory, so concurrent door
scanners racing on the same guest produce exactly one ``success``; every other
attempt reports ``already-checked`` with the winner's timestamp and actor.
"""

import logging
import unicodedata
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Literal, TypedDict, TypeVar

from backend.config import CHECKIN_TIMEOUT_SECONDS
from backend.services.notifications import NotificationFanout
from backend.services.qr_codec import encode_checkin_code, encode_connection_url, parse_qr_payload
from backend.services.roles import RoleInfo, resolve_role, role_priority
from backend.services.stats import EventStats, StatsBoard
from database.store import (
    CheckInMethod,
    EventRecord,
    RegistrationRecord,
    RegistrationStore,
    ScanEventRecord,
    ScanOutcome,
    StoreError,
    StoreUnavailable,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

LookupStatus = Literal["found", "not-found", "error"]
CancelOutcome = Literal["cancelled", "not-found", "checked-in"]

INVALID_QR_MESSAGES = {
    "empty_payload": "QR code is empty.",
    "no_event_selected": "Select an event before scanning this QR code.",
    "bare_id_too_short": "QR code is too short to be a user ID.",
    "connect_missing_user": "Connection link does not contain a user ID.",
    "json_missing_ids": "QR code does not contain both an event ID and a user ID.",
    "malformed_json": "Invalid QR code format.",
}
SYSTEM_ERROR_MESSAGE = "Check-in failed due to system error. Please retry."


class EventNotFound(LookupError):
    pass


class RegistrationNotFound(LookupError):
    pass


class EventSummary(TypedDict):
    id: str
    name: str
    date: str | None


class ScanResult(TypedDict):
    type: ScanOutcome
    message: str
    event_id: str | None
    user_id: str | None
    registration: RegistrationRecord | None
    role: RoleInfo | None
    event: EventSummary | None
    retryable: bool
    checked_in_at: str | None
    checked_in_by: str | None


class LookupResult(TypedDict):
    status: LookupStatus
    message: str
    registration: RegistrationRecord | None
    role: RoleInfo | None
    event: EventSummary | None


class DoorListEntry(TypedDict):
    registration: RegistrationRecord
    role: RoleInfo


class DoorList(TypedDict):
    event_id: str
    role_filter: str
    registrations: list[DoorListEntry]
    total: int
    checked_in: int
    remaining: int


class RegistrationCodes(TypedDict):
    event_id: str
    user_id: str
    checkin_code: str | None
    connection_url: str


def name_sort_key(name: str | None) -> tuple[str, str]:
    """Alphabetical key that ignores case and accents, so "Émile" files under E."""
    raw = name or ""
    folded = "".join(ch for ch in unicodedata.normalize("NFKD", raw) if not unicodedata.combining(ch))
    return folded.casefold(), raw.casefold()


def _event_summary(event: EventRecord | None) -> EventSummary | None:
    if event is None:
        return None
    return {"id": event["id"], "name": event["name"], "date": event["date"]}


def _result(
    outcome: ScanOutcome,
    message: str,
    *,
    event_id: str | None = None,
    user_id: str | None = None,
    registration: RegistrationRecord | None = None,
    role: RoleInfo | None = None,
    event: EventRecord | None = None,
) -> ScanResult:
    return {
        "type": outcome,
        "message": message,
        "event_id": event_id,
        "user_id": user_id,
        "registration": registration,
        "role": role,
        "event": _event_summary(event),
        "retryable": outcome == "error",
        "checked_in_at": registration["checked_in_at"] if registration else None,
        "checked_in_by": registration["checked_in_by"] if registration else None,
    }


class CheckInService:
    def __init__(
        self,
        store: RegistrationStore,
        *,
        notifier: NotificationFanout | None = None,
        stats_board: StatsBoard | None = None,
        timeout_seconds: float = CHECKIN_TIMEOUT_SECONDS,
        max_workers: int = 8,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.stats_board = stats_board or StatsBoard(store)
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="checkin-store")

    # -----------------------------
    # Store access
    # -----------------------------
    def _call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run a whole service operation under one check-in deadline.

        ``fn`` talks to the directory directly; however many reads and writes
        it makes, the caller waits at most ``timeout_seconds`` in total.
        """
        future: Future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError as exc:
            future.cancel()
            raise StoreUnavailable(
                f"{getattr(fn, '__name__', 'store call')} timed out after {self.timeout_seconds}s."
            ) from exc

    def _audit(
        self,
        outcome: ScanOutcome,
        message: str,
        *,
        event_id: str | None,
        user_id: str | None,
        actor_id: str | None,
        method: CheckInMethod,
        role: RoleInfo | None = None,
    ) -> None:
        try:
            self.store.record_scan_event(
                event_id=event_id,
                user_id=user_id,
                actor_id=actor_id,
                outcome=outcome,
                method=method,
                role=role["role"] if role else None,
                message=message,
            )
        except StoreError as exc:
            # Audit rows are best-effort; the check-in decision already stands.
            logger.warning("Could not record %s scan event for %s/%s: %s", outcome, event_id, user_id, exc)

    def _audit_in_background(self, result: ScanResult, *, actor_id: str, method: CheckInMethod) -> None:
        try:
            self._executor.submit(
                self._audit,
                result["type"],
                result["message"],
                event_id=result["event_id"],
                user_id=result["user_id"],
                actor_id=actor_id,
                method=method,
            )
        except RuntimeError as exc:
            logger.warning("Scan event not queued: %s", exc)

    def _require_event(self, event_id: str) -> EventRecord:
        event = self.store.get_event(event_id)
        if event is None:
            raise EventNotFound(f"Event {event_id} not found.")
        return event

    # -----------------------------
    # State machine
    # -----------------------------
    def _transition(self, event_id: str, user_id: str, actor_id: str, method: CheckInMethod) -> ScanResult:
        event = self.store.get_event(event_id)
        if event is None:
            return _result("not-found", f"Event {event_id} not found.", event_id=event_id, user_id=user_id)

        registration = self.store.get_registration(event_id, user_id)
        if registration is None:
            return _result(
                "not-found",
                f"User is not registered for {event['name']}.",
                event_id=event_id,
                user_id=user_id,
                event=event,
            )

        role = resolve_role(registration, event["speakers"])
        if registration["checked_in"]:
            return _result(
                "already-checked",
                f"{registration['name']} is already checked in.",
                event_id=event_id,
                user_id=user_id,
                registration=registration,
                role=role,
                event=event,
            )

        write = self.store.conditional_set_checked_in(
            event_id,
            user_id,
            actor_id,
            checked_in_at=utc_now_iso(),
            expected_checked_in=False,
        )
        current = write["current"]
        if current is None:
            # Cancelled between the read and the write.
            return _result(
                "not-found",
                f"User is not registered for {event['name']}.",
                event_id=event_id,
                user_id=user_id,
                event=event,
            )
        role = resolve_role(current, event["speakers"])
        if not write["applied"]:
            logger.info("Lost check-in race for %s/%s to %s", event_id, user_id, current["checked_in_by"])
            return _result(
                "already-checked",
                f"{current['name']} is already checked in.",
                event_id=event_id,
                user_id=user_id,
                registration=current,
                role=role,
                event=event,
            )

        logger.info("Checked in %s (%s) for %s via %s", current["name"], role["display"], event_id, method)
        self._after_success(current, event, role)
        return _result(
            "success",
            f"{current['name']} checked in successfully.",
            event_id=event_id,
            user_id=user_id,
            registration=current,
            role=role,
            event=event,
        )

    def _after_success(self, registration: RegistrationRecord, event: EventRecord, role: RoleInfo) -> None:
        if self.notifier is not None:
            try:
                self.notifier.notify_arrival(registration, event, role)
            except RuntimeError as exc:
                # Executor already shut down.
                logger.warning("Arrival alert not queued: %s", exc)
        try:
            self.stats_board.schedule_refresh(event["id"])
        except RuntimeError as exc:
            logger.warning("Stats refresh not queued: %s", exc)

    def _transition_and_audit(
        self, event_id: str, user_id: str, actor_id: str, method: CheckInMethod
    ) -> ScanResult:
        result = self._transition(event_id, user_id, actor_id, method)
        self._audit(
            result["type"],
            result["message"],
            event_id=event_id,
            user_id=user_id,
            actor_id=actor_id,
            method=method,
            role=result["role"],
        )
        return result

    def check_in(
        self,
        event_id: str,
        user_id: str,
        actor_id: str,
        method: CheckInMethod = "qr-scan",
    ) -> ScanResult:
        try:
            return self._call(self._transition_and_audit, event_id, user_id, actor_id, method)
        except StoreError as exc:
            logger.error("Check-in for %s/%s failed: %s", event_id, user_id, exc)
            result = _result("error", SYSTEM_ERROR_MESSAGE, event_id=event_id, user_id=user_id)

        # The directory is slow or down; the door gets its answer without waiting on the audit row.
        self._audit_in_background(result, actor_id=actor_id, method=method)
        return result

    def scan(self, raw: str | None, current_event_id: str | None, actor_id: str) -> ScanResult:
        identity, reason = parse_qr_payload(raw, current_event_id)
        if identity is None:
            message = INVALID_QR_MESSAGES.get(reason, "Invalid QR code format.")
            logger.info("Rejected QR payload (%s)", reason)
            context = (current_event_id or "").strip() or None
            if context:
                try:
                    self._call(
                        self._audit, "invalid-qr", message, event_id=context, user_id=None, actor_id=actor_id, method="qr-scan"
                    )
                except StoreUnavailable as exc:
                    logger.warning("Invalid scan for %s not recorded: %s", context, exc)
            return _result("invalid-qr", message, event_id=context)

        return self.check_in(identity["event_id"], identity["user_id"], actor_id, "qr-scan")

    def manual_check_in(self, event_id: str, user_id: str, actor_id: str) -> ScanResult:
        return self.check_in(event_id, user_id, actor_id, "manual")

    def _lookup_email(self, event_id: str, email: str) -> tuple[EventRecord | None, RegistrationRecord | None]:
        event = self.store.get_event(event_id)
        if event is None:
            return None, None
        return event, self.store.find_registration_by_email(event_id, email)

    def find_by_email(self, event_id: str, email: str) -> LookupResult:
        try:
            event, registration = self._call(self._lookup_email, event_id, email)
        except StoreError as exc:
            logger.error("Email lookup for %s failed: %s", event_id, exc)
            return {
                "status": "error",
                "message": "Lookup failed due to system error. Please retry.",
                "registration": None,
                "role": None,
                "event": None,
            }

        if event is None:
            return {
                "status": "not-found",
                "message": f"Event {event_id} not found.",
                "registration": None,
                "role": None,
                "event": None,
            }
        if registration is None:
            return {
                "status": "not-found",
                "message": f"No registration for {email.strip()} at {event['name']}.",
                "registration": None,
                "role": None,
                "event": _event_summary(event),
            }
        return {
            "status": "found",
            "message": f"{registration['name']} is registered for {event['name']}.",
            "registration": registration,
            "role": resolve_role(registration, event["speakers"]),
            "event": _event_summary(event),
        }

    # -----------------------------
    # Read models
    # -----------------------------
    def get_stats(self, event_id: str, *, cached: bool = False) -> EventStats:
        if cached:
            snapshot = self.stats_board.snapshot(event_id)
            if snapshot is not None:
                return snapshot
        return self._call(self._fresh_stats, event_id)

    def _fresh_stats(self, event_id: str) -> EventStats:
        self._require_event(event_id)
        return self.stats_board.refresh(event_id)

    def get_door_list(self, event_id: str, role: str = "all") -> DoorList:
        return self._call(self._door_list, event_id, role)

    def _door_list(self, event_id: str, role: str) -> DoorList:
        event = self._require_event(event_id)
        registrations = self.store.list_registrations(event_id)
        role_filter = (role or "all").strip().lower() or "all"

        entries: list[DoorListEntry] = []
        for registration in registrations:
            info = resolve_role(registration, event["speakers"])
            if role_filter != "all" and info["role"] != role_filter:
                continue
            entries.append({"registration": registration, "role": info})

        entries.sort(key=lambda entry: (role_priority(entry["role"]["role"]), name_sort_key(entry["registration"]["name"])))
        checked_in = sum(1 for entry in entries if entry["registration"]["checked_in"])
        return {
            "event_id": event_id,
            "role_filter": role_filter,
            "registrations": entries,
            "total": len(entries),
            "checked_in": checked_in,
            "remaining": len(entries) - checked_in,
        }

    def list_scan_events(
        self,
        event_id: str,
        *,
        outcome: ScanOutcome | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ScanEventRecord]:
        return self._call(self.store.list_scan_events, event_id, outcome=outcome, limit=limit, offset=offset)

    def registration_codes(self, event_id: str, user_id: str) -> RegistrationCodes:
        registration = self._call(self.store.get_registration, event_id, user_id)
        if registration is None:
            raise RegistrationNotFound(f"No registration for {user_id} at {event_id}.")
        try:
            checkin_code = encode_checkin_code(event_id, user_id)
        except ValueError as exc:
            logger.warning("No composite code for %s/%s: %s", event_id, user_id, exc)
            checkin_code = None
        return {
            "event_id": event_id,
            "user_id": user_id,
            "checkin_code": checkin_code,
            "connection_url": encode_connection_url(user_id, event_id),
        }

    def _cancel(self, event_id: str, user_id: str) -> CancelOutcome:
        registration = self.store.get_registration(event_id, user_id)
        if registration is None:
            return "not-found"
        if registration["checked_in"]:
            return "checked-in"

        if not self.store.cancel_registration(event_id, user_id):
            # Checked in (or removed) since the read.
            current = self.store.get_registration(event_id, user_id)
            return "checked-in" if current is not None else "not-found"
        return "cancelled"

    def cancel_registration(self, event_id: str, user_id: str) -> CancelOutcome:
        outcome = self._call(self._cancel, event_id, user_id)
        if outcome == "cancelled":
            logger.info("Cancelled registration %s/%s", event_id, user_id)
            self.stats_board.schedule_refresh(event_id)
        return outcome

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        self.stats_board.shutdown(wait=wait)
        if self.notifier is not None:
            self.notifier.shutdown(wait=wait)
