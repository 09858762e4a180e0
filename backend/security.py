"""
Door staff sessions.

Tokens are ``<payload>.<signature>`` with an HMAC-SHA256 signature over the
base64url JSON claims. ``sub`` is the actor id stamped on every check-in and
audit row; ``role`` separates door staff from admins who may also cancel
registrations and read the scan log.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import Literal, TypedDict

from fastapi import Depends, Header, HTTPException

from backend.config import AUTH_TOKEN_TTL_SECONDS, SIGNING_KEY

SessionRole = Literal["staff", "admin"]
SESSION_ROLES = ("staff", "admin")


class SessionClaims(TypedDict):
    sub: str
    role: SessionRole
    iat: int
    exp: int


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        SIGNING_KEY.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def issue_session_token(actor_id: str, *, role: SessionRole = "staff") -> tuple[str, SessionClaims]:
    actor = actor_id.strip()
    if not actor:
        raise ValueError("actor_id is required.")
    if role not in SESSION_ROLES:
        raise ValueError(f"Unknown session role: {role!r}")

    issued_at = int(time.time())
    claims: SessionClaims = {
        "sub": actor,
        "role": role,
        "iat": issued_at,
        "exp": issued_at + AUTH_TOKEN_TTL_SECONDS,
    }
    claims_b64 = _b64url_encode(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8"))
    return f"{claims_b64}.{_sign(claims_b64)}", claims


def decode_session_token(token: str) -> SessionClaims | None:
    """Return the claims of a well-signed, unexpired token, else None."""
    if not token or "." not in token:
        return None

    claims_b64, signature = token.split(".", 1)
    if not hmac.compare_digest(signature, _sign(claims_b64)):
        return None

    try:
        claims = json.loads(_b64url_decode(claims_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(claims, dict):
        return None

    sub = claims.get("sub")
    exp = claims.get("exp")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if not isinstance(exp, int) or exp < int(time.time()):
        return None
    if claims.get("role", "staff") not in SESSION_ROLES:
        return None

    return {
        "sub": sub.strip(),
        "role": claims.get("role", "staff"),
        "iat": int(claims.get("iat") or 0),
        "exp": exp,
    }


def require_session(authorization: str | None = Header(default=None)) -> SessionClaims:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    claims = decode_session_token(token.strip())
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")

    return claims


def require_actor(session: SessionClaims = Depends(require_session)) -> str:
    """The signed-in actor id, as recorded in ``checked_in_by``."""
    return session["sub"]


def require_admin(session: SessionClaims = Depends(require_session)) -> SessionClaims:
    if session["role"] != "admin":
        raise HTTPException(status_code=403, detail="Admin session required.")
    return session
