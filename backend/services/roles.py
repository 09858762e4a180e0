from typing import Iterable, TypedDict

from database.store import RegistrationRecord

DEFAULT_ROLE = "attendee"
FALLBACK_COLOR = "#6B7280"

ROLE_COLORS = {
    "admin": "#DC2626",
    "speaker": "#7C3AED",
    "vip": "#F59E0B",
    "sponsor": "#059669",
    "investor": "#0EA5E9",
    "founder": "#EA580C",
    "attendee": "#6B7280",
}

# Door list ordering, lower first.
ROLE_PRIORITY = {
    "speaker": 1,
    "vip": 2,
    "sponsor": 3,
    "attendee": 4,
}
DEFAULT_PRIORITY = 5


class RoleInfo(TypedDict):
    role: str
    display: str
    color: str
    priority: int


def role_color(role: str) -> str:
    return ROLE_COLORS.get((role or "").lower(), FALLBACK_COLOR)


def role_priority(role: str) -> int:
    return ROLE_PRIORITY.get((role or "").lower(), DEFAULT_PRIORITY)


def _role_info(role: str, display: str) -> RoleInfo:
    return {
        "role": role,
        "display": display,
        "color": role_color(role),
        "priority": role_priority(role),
    }


def _clean(value: str | None) -> str:
    return (value or "").strip()


def resolve_role(registration: RegistrationRecord, speakers: Iterable[str] = ()) -> RoleInfo:
    """
    Pick the single display role for a registration.

    First match wins: badge override, event speaker, VIP ticket, profile role,
    then attendee. Recomputed on every read; never stored on the record.
    """
    badge_role = _clean(registration.get("badge_role"))
    if badge_role:
        return _role_info(badge_role.lower(), badge_role)

    if registration.get("user_id") in set(speakers):
        return _role_info("speaker", "Speaker")

    if "vip" in _clean(registration.get("ticket_type")).lower():
        return _role_info("vip", "VIP")

    profile_role = _clean(registration.get("role"))
    if profile_role:
        return _role_info(profile_role.lower(), profile_role)

    return _role_info(DEFAULT_ROLE, "Attendee")
