import sqlite3
import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from backend.security import SessionClaims, issue_session_token, require_session
from database.db import create_tables, verify_admin_credentials

router = APIRouter()


class StaffLogin(BaseModel):
    username: str
    password: str


def _session_body(claims: SessionClaims) -> dict:
    return {
        "actor_id": claims["sub"],
        "username": claims["sub"],
        "role": claims["role"],
        "issued_at": claims["iat"],
        "expires_at": claims["exp"],
    }


def _lookup_account(username: str, password: str) -> dict | None:
    try:
        return verify_admin_credentials(username, password)
    except sqlite3.OperationalError:
        # Schema missing when startup was skipped; create it once and retry.
        try:
            create_tables()
            return verify_admin_credentials(username, password)
        except sqlite3.OperationalError:
            raise HTTPException(status_code=503, detail="Authentication service unavailable. Please retry.")


@router.post("/auth/login")
def staff_login(payload: StaffLogin):
    username = payload.username.strip()
    password = payload.password.strip()
    if not username or not password:
        raise HTTPException(status_code=400, detail="Username and password are required.")

    account = _lookup_account(username, password)
    if not account:
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    token, claims = issue_session_token(account["username"], role="admin")
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": max(0, claims["exp"] - int(time.time())),
        **_session_body(claims),
    }


@router.get("/auth/me")
def auth_me(session: SessionClaims = Depends(require_session)):
    return _session_body(session)
