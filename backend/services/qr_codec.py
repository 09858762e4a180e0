"""
QR payload codec.

Four payload shapes are recognised, tried in this order, and the first shape
that structurally matches decides the outcome:

1. composite check-in code  ``<event_id>-<user_id>``
2. connection URL           ``https://<connect host>/connect?to=<user_id>&event=<event_id>``
3. bare user id             any other string not starting with ``{`` (needs the selected event)
4. JSON object              ``{"eventId": ..., "userId": ...}``

A string with one ``-`` but an empty side is not a composite code; it is tried
as a bare id instead.
"""

import json
import re
from typing import Literal, TypedDict
from urllib.parse import parse_qs, urlencode, urlsplit

from backend.config import BARE_ID_MIN_LENGTH, CONNECT_HOSTS, CONNECT_URL_BASE

QrFormat = Literal["composite", "connect-url", "bare-id", "json"]

ID_CHARS = r"A-Za-z0-9_."
ID_TOKEN_RE = re.compile(rf"^[{ID_CHARS}]+$")
WHITESPACE_RE = re.compile(r"\s")
CONNECT_PATH = "/connect"
PREVIEW_EVENT_ID = "preview"


class ScanIdentity(TypedDict):
    event_id: str
    user_id: str
    format: QrFormat


def _identity(event_id: str, user_id: str, fmt: QrFormat) -> ScanIdentity:
    return {"event_id": event_id, "user_id": user_id, "format": fmt}


def _context(current_event_id: str | None) -> str | None:
    value = (current_event_id or "").strip()
    return value or None


def _parse_composite(payload: str) -> tuple[ScanIdentity, str] | None:
    if payload.startswith("{") or payload.count("-") != 1:
        return None
    # URLs and free text with a single dash are not check-in codes.
    if "://" in payload or WHITESPACE_RE.search(payload):
        return None
    event_id, user_id = payload.split("-")
    if not event_id or not user_id:
        return None
    return _identity(event_id, user_id, "composite"), "ok"


def _parse_connect_url(
    payload: str,
    current_event_id: str | None,
    connect_hosts: list[str],
) -> tuple[ScanIdentity | None, str] | None:
    try:
        parts = urlsplit(payload)
    except ValueError:
        return None
    if parts.scheme.lower() not in {"http", "https"}:
        return None
    host = (parts.hostname or "").lower()
    if host not in connect_hosts:
        return None
    if parts.path.rstrip("/") != CONNECT_PATH:
        return None

    query = parse_qs(parts.query)
    user_id = (query.get("to") or [""])[0].strip()
    if not user_id:
        return None, "connect_missing_user"

    event_id = (query.get("event") or [""])[0].strip()
    if not event_id or event_id == PREVIEW_EVENT_ID:
        event_id = _context(current_event_id) or ""
        if not event_id:
            return None, "no_event_selected"
    return _identity(event_id, user_id, "connect-url"), "ok"


def _parse_bare_id(
    payload: str,
    current_event_id: str | None,
    min_length: int,
) -> tuple[ScanIdentity | None, str] | None:
    if payload.startswith("{"):
        return None
    if len(payload) < min_length:
        return None, "bare_id_too_short"
    event_id = _context(current_event_id)
    if not event_id:
        return None, "no_event_selected"
    return _identity(event_id, payload, "bare-id"), "ok"


def _parse_json(payload: str) -> tuple[ScanIdentity | None, str]:
    try:
        data = json.loads(payload)
    except ValueError:
        return None, "malformed_json"
    if not isinstance(data, dict):
        return None, "malformed_json"

    event_id = data.get("eventId")
    user_id = data.get("userId")
    if not isinstance(event_id, str) or not isinstance(user_id, str):
        return None, "json_missing_ids"
    if not event_id.strip() or not user_id.strip():
        return None, "json_missing_ids"
    return _identity(event_id.strip(), user_id.strip(), "json"), "ok"


def parse_qr_payload(
    raw: str | None,
    current_event_id: str | None = None,
    *,
    bare_id_min_length: int = BARE_ID_MIN_LENGTH,
    connect_hosts: list[str] | None = None,
) -> tuple[ScanIdentity | None, str]:
    """
    Decode a scanned payload into ``(identity, reason)``.

    On success ``reason`` is ``"ok"``; otherwise identity is None and
    ``reason`` names the rejection (``empty_payload``, ``no_event_selected``,
    ``bare_id_too_short`` ...). ``current_event_id`` is the event selected on
    the scanning device, used only by formats that do not carry one.
    """
    payload = (raw or "").strip()
    if not payload:
        return None, "empty_payload"

    hosts = [host.lower() for host in (connect_hosts if connect_hosts is not None else CONNECT_HOSTS)]

    parsed = _parse_composite(payload)
    if parsed is not None:
        return parsed

    parsed = _parse_connect_url(payload, current_event_id, hosts)
    if parsed is not None:
        return parsed

    parsed = _parse_bare_id(payload, current_event_id, max(1, bare_id_min_length))
    if parsed is not None:
        return parsed

    return _parse_json(payload)


def encode_checkin_code(event_id: str, user_id: str) -> str:
    """Admin check-in code, ``<event_id>-<user_id>``."""
    for label, value in (("event_id", event_id), ("user_id", user_id)):
        if not value or not ID_TOKEN_RE.match(value):
            raise ValueError(f"{label} cannot be encoded in a check-in code: {value!r}")
    return f"{event_id}-{user_id}"


def encode_connection_url(user_id: str, event_id: str | None = None, *, base_url: str = CONNECT_URL_BASE) -> str:
    clean_user = (user_id or "").strip()
    if not clean_user:
        raise ValueError("user_id is required.")
    clean_event = (event_id or "").strip() or PREVIEW_EVENT_ID
    return f"{base_url}?{urlencode({'to': clean_user, 'event': clean_event})}"
