import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, cast

from backend.config import (
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    DB_PATH,
    SQLITE_BUSY_TIMEOUT_SECONDS,
)
from database.store import (
    CheckInMethod,
    ConditionalWriteResult,
    EventRecord,
    EventStatus,
    RegistrationRecord,
    RegistrationStatus,
    ScanEventRecord,
    ScanOutcome,
    StoreError,
    StoreUnavailable,
    normalize_email,
)

logger = logging.getLogger(__name__)

PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000

REGISTRATION_COLUMNS = """
    event_id,
    user_id,
    name,
    email,
    phone,
    work,
    role,
    badge_role,
    ticket_type,
    status,
    checked_in,
    checked_in_at,
    checked_in_by,
    registered_at
"""


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def connect_db(db_path: Path | str | None = None):
    conn = sqlite3.connect(
        str(db_path or DB_PATH),
        timeout=SQLITE_BUSY_TIMEOUT_SECONDS,
        check_same_thread=False,
    )
    # recommended with FK tables
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as exc:
        # "database is locked" and unreadable files land here
        logger.warning("sqlite %s failed: %s", operation, exc)
        raise StoreUnavailable(f"Registration directory unavailable during {operation}.") from exc
    except sqlite3.DatabaseError as exc:
        logger.error("sqlite %s failed: %s", operation, exc)
        raise StoreError(f"Registration directory error during {operation}.") from exc


def _ensure_default_admin(cursor: sqlite3.Cursor) -> None:
    username = (ADMIN_USERNAME or "").strip()
    password = (ADMIN_PASSWORD or "").strip()
    if not username or not password:
        return

    cursor.execute(
        """
        SELECT id
        FROM admin_users
        WHERE username = ? COLLATE NOCASE
        """,
        (username,),
    )
    if cursor.fetchone():
        return

    cursor.execute(
        """
        INSERT INTO admin_users (username, password_hash)
        VALUES (?, ?)
        """,
        (username, _hash_password(password)),
    )


def create_tables(db_path: Path | str | None = None):
    conn = connect_db(db_path)
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        date TEXT,
        location TEXT,
        capacity INTEGER NOT NULL DEFAULT 100,
        status TEXT NOT NULL DEFAULT 'active',
        speakers_json TEXT NOT NULL DEFAULT '[]',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS registrations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        phone TEXT,
        work TEXT,
        role TEXT,
        badge_role TEXT,
        ticket_type TEXT,
        status TEXT NOT NULL DEFAULT 'registered',
        checked_in INTEGER NOT NULL DEFAULT 0,
        checked_in_at TEXT,
        checked_in_by TEXT,
        registered_at TEXT,
        UNIQUE(event_id, user_id)
    )
    """)

    cursor.execute(
        """
    CREATE TABLE IF NOT EXISTS admin_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """
    )

    # Append-only audit trail, one row per scan attempt.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS scan_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT,
        user_id TEXT,
        actor_id TEXT,
        outcome TEXT NOT NULL,
        method TEXT NOT NULL,
        role TEXT,
        message TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%S+00:00', 'now'))
    )
    """)

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_registrations_event ON registrations (event_id)")
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_scan_events_event ON scan_events (event_id, id)")

    _ensure_default_admin(cursor)

    conn.commit()
    conn.close()


# -----------------------------
# Admin users
# -----------------------------
def verify_admin_credentials(username: str, password: str, *, db_path: Path | str | None = None) -> dict | None:
    clean_username = username.strip()
    clean_password = password.strip()
    if not clean_username or not clean_password:
        return None

    conn = connect_db(db_path)
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, username, password_hash
        FROM admin_users
        WHERE username = ? COLLATE NOCASE
        """,
        (clean_username,),
    )
    row = cur.fetchone()
    conn.close()

    if not row:
        return None

    admin_id, saved_username, password_hash = row
    if not _verify_password(clean_password, password_hash):
        return None

    return {"id": admin_id, "username": saved_username}


# -----------------------------
# Row mapping
# -----------------------------
def _event_from_row(row) -> EventRecord:
    event_id, name, date, location, capacity, status, speakers_json = row
    try:
        speakers = [str(item) for item in json.loads(speakers_json or "[]")]
    except (TypeError, ValueError):
        speakers = []
    return {
        "id": str(event_id),
        "name": str(name),
        "date": str(date) if date else None,
        "location": str(location) if location else None,
        "capacity": int(capacity or 0),
        "status": cast(EventStatus, str(status or "active")),
        "speakers": speakers,
    }


def _registration_from_row(row) -> RegistrationRecord:
    (
        event_id,
        user_id,
        name,
        email,
        phone,
        work,
        role,
        badge_role,
        ticket_type,
        status,
        checked_in,
        checked_in_at,
        checked_in_by,
        registered_at,
    ) = row
    return {
        "event_id": str(event_id),
        "user_id": str(user_id),
        "name": str(name or ""),
        "email": str(email or ""),
        "phone": phone,
        "work": work,
        "role": role,
        "badge_role": badge_role,
        "ticket_type": ticket_type,
        "status": cast(RegistrationStatus, str(status or "registered")),
        "checked_in": bool(checked_in),
        "checked_in_at": str(checked_in_at) if checked_in_at else None,
        "checked_in_by": str(checked_in_by) if checked_in_by else None,
        "registered_at": str(registered_at) if registered_at else None,
    }


def _scan_event_from_row(row) -> ScanEventRecord:
    scan_event_id, event_id, user_id, actor_id, outcome, method, role, message, created_at = row
    return {
        "id": int(scan_event_id),
        "event_id": event_id,
        "user_id": user_id,
        "actor_id": actor_id,
        "outcome": cast(ScanOutcome, str(outcome)),
        "method": cast(CheckInMethod, str(method)),
        "role": role,
        "message": str(message or ""),
        "created_at": str(created_at),
    }


# -----------------------------
# Registration directory
# -----------------------------
class SqliteRegistrationStore:
    """
    Registration directory backed by the sqlite file at ``DB_PATH``.

    Every call opens its own connection so the store is safe to share between
    request threads. The check-in write is a single guarded ``UPDATE`` so two
    door devices racing on the same guest can never both apply it.
    """

    def __init__(self, db_path: Path | str | None = None) -> None:
        self.db_path = Path(db_path or DB_PATH)

    def _connect(self):
        return connect_db(self.db_path)

    def add_event(self, event: EventRecord) -> None:
        with _translate_errors("add_event"):
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO events (id, name, date, location, capacity, status, speakers_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        date = excluded.date,
                        location = excluded.location,
                        capacity = excluded.capacity,
                        status = excluded.status,
                        speakers_json = excluded.speakers_json
                    """,
                    (
                        event["id"],
                        event["name"],
                        event["date"],
                        event["location"],
                        int(event["capacity"]),
                        event["status"],
                        json.dumps(list(event["speakers"])),
                    ),
                )
                conn.commit()
            finally:
                conn.close()

    def add_registration(self, registration: RegistrationRecord) -> None:
        with _translate_errors("add_registration"):
            conn = self._connect()
            try:
                conn.execute(
                    f"""
                    INSERT INTO registrations ({REGISTRATION_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        registration["event_id"],
                        registration["user_id"],
                        registration["name"],
                        registration["email"],
                        registration["phone"],
                        registration["work"],
                        registration["role"],
                        registration["badge_role"],
                        registration["ticket_type"],
                        registration["status"],
                        1 if registration["checked_in"] else 0,
                        registration["checked_in_at"],
                        registration["checked_in_by"],
                        registration["registered_at"],
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as exc:
                raise ValueError("User is already registered for this event.") from exc
            finally:
                conn.close()

    def get_event(self, event_id: str) -> EventRecord | None:
        with _translate_errors("get_event"):
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    """
                    SELECT id, name, date, location, capacity, status, speakers_json
                    FROM events
                    WHERE id = ?
                    """,
                    (event_id,),
                )
                row = cur.fetchone()
            finally:
                conn.close()
        return _event_from_row(row) if row else None

    def list_registrations(self, event_id: str) -> list[RegistrationRecord]:
        with _translate_errors("list_registrations"):
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    f"""
                    SELECT {REGISTRATION_COLUMNS}
                    FROM registrations
                    WHERE event_id = ?
                    ORDER BY id ASC
                    """,
                    (event_id,),
                )
                rows = cur.fetchall()
            finally:
                conn.close()
        return [_registration_from_row(row) for row in rows]

    def _fetch_registration(self, cur: sqlite3.Cursor, event_id: str, user_id: str) -> RegistrationRecord | None:
        cur.execute(
            f"""
            SELECT {REGISTRATION_COLUMNS}
            FROM registrations
            WHERE event_id = ? AND user_id = ?
            """,
            (event_id, user_id),
        )
        row = cur.fetchone()
        return _registration_from_row(row) if row else None

    def get_registration(self, event_id: str, user_id: str) -> RegistrationRecord | None:
        with _translate_errors("get_registration"):
            conn = self._connect()
            try:
                return self._fetch_registration(conn.cursor(), event_id, user_id)
            finally:
                conn.close()

    def find_registration_by_email(self, event_id: str, email: str) -> RegistrationRecord | None:
        wanted = normalize_email(email)
        if not wanted:
            return None
        with _translate_errors("find_registration_by_email"):
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    f"""
                    SELECT {REGISTRATION_COLUMNS}
                    FROM registrations
                    WHERE event_id = ? AND lower(trim(email)) = ?
                    ORDER BY id ASC
                    LIMIT 1
                    """,
                    (event_id, wanted),
                )
                row = cur.fetchone()
            finally:
                conn.close()
        return _registration_from_row(row) if row else None

    def conditional_set_checked_in(
        self,
        event_id: str,
        user_id: str,
        actor_id: str,
        *,
        checked_in_at: str,
        expected_checked_in: bool = False,
    ) -> ConditionalWriteResult:
        with _translate_errors("conditional_set_checked_in"):
            conn = self._connect()
            try:
                cur = conn.cursor()
                # Write first so the transaction takes the write lock up front.
                cur.execute(
                    """
                    UPDATE registrations
                    SET checked_in = 1,
                        checked_in_at = ?,
                        checked_in_by = ?,
                        status = 'attended'
                    WHERE event_id = ? AND user_id = ? AND checked_in = ?
                    """,
                    (checked_in_at, actor_id, event_id, user_id, 1 if expected_checked_in else 0),
                )
                applied = cur.rowcount == 1
                current = self._fetch_registration(cur, event_id, user_id)
                conn.commit()
            finally:
                conn.close()
        return {"applied": applied, "current": current}

    def cancel_registration(self, event_id: str, user_id: str) -> bool:
        with _translate_errors("cancel_registration"):
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    """
                    DELETE FROM registrations
                    WHERE event_id = ? AND user_id = ? AND checked_in = 0
                    """,
                    (event_id, user_id),
                )
                deleted = cur.rowcount == 1
                conn.commit()
            finally:
                conn.close()
        return deleted

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
        with _translate_errors("record_scan_event"):
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    """
                    INSERT INTO scan_events (event_id, user_id, actor_id, outcome, method, role, message)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (event_id, user_id, actor_id, outcome, method, role, message),
                )
                scan_event_id = int(cur.lastrowid)
                conn.commit()
            finally:
                conn.close()
        return scan_event_id

    def list_scan_events(
        self,
        event_id: str,
        *,
        outcome: ScanOutcome | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ScanEventRecord]:
        where = ["event_id = ?"]
        params: list[object] = [event_id]
        if outcome:
            where.append("outcome = ?")
            params.append(outcome)
        params.extend([max(0, int(limit)), max(0, int(offset))])

        with _translate_errors("list_scan_events"):
            conn = self._connect()
            try:
                cur = conn.cursor()
                cur.execute(
                    f"""
                    SELECT id, event_id, user_id, actor_id, outcome, method, role, message, created_at
                    FROM scan_events
                    WHERE {" AND ".join(where)}
                    ORDER BY id DESC
                    LIMIT ? OFFSET ?
                    """,
                    params,
                )
                rows = cur.fetchall()
            finally:
                conn.close()
        return [_scan_event_from_row(row) for row in rows]
