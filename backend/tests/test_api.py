import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
import backend.routers.core as core
import database.db as db
from backend.dependencies import get_checkin_service
from backend.security import decode_session_token, issue_session_token
from backend.services.checkin import CheckInService
from database.memory import InMemoryRegistrationStore
from database.store import new_event, new_registration


def _seed(store):
    store.add_event(new_event("E1", name="Wine Night", capacity=4, date="2026-03-01", speakers=["U3"]))
    store.add_registration(new_registration("E1", "U1", name="Dana Reyes", email="dana@example.com"))
    store.add_registration(new_registration("E1", "U2", name="Ari Cole", email="ari@example.com", ticket_type="VIP"))
    store.add_registration(new_registration("E1", "U3", name="Bea Lin", email="bea@example.com"))


@pytest.fixture()
def store(tmp_path, monkeypatch):
    test_db = tmp_path / "doorcheck_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()
    sqlite_store = db.SqliteRegistrationStore(test_db)
    _seed(sqlite_store)
    return sqlite_store


@pytest.fixture()
def service(store):
    svc = CheckInService(store)
    yield svc
    svc.shutdown()


@pytest.fixture()
def client(service):
    main.app.dependency_overrides[get_checkin_service] = lambda: service
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers(client):
    res = client.post(
        "/auth/login",
        json={
            "username": config.ADMIN_USERNAME,
            "password": config.ADMIN_PASSWORD,
        },
    )
    assert res.status_code == 200
    token = res.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_debug_dbpath_disabled_by_default(client, auth_headers):
    res = client.get("/debug/dbpath", headers=auth_headers)
    assert res.status_code == 404
    assert res.json()["detail"] == "Not found."


def test_debug_dbpath_requires_session_when_enabled(client, monkeypatch, auth_headers):
    monkeypatch.setattr(core, "ENABLE_DEBUG_ENDPOINTS", True)

    res = client.get("/debug/dbpath")
    assert res.status_code == 401

    res = client.get("/debug/dbpath", headers=auth_headers)
    assert res.status_code == 200
    assert "db_path" in res.json()


def test_login_rejects_invalid_credentials(client):
    res = client.post(
        "/auth/login",
        json={"username": config.ADMIN_USERNAME, "password": "wrong-password"},
    )
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid credentials."


def test_auth_me(client, auth_headers):
    res = client.get("/auth/me", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["username"] == config.ADMIN_USERNAME
    assert res.json()["role"] == "admin"
    assert res.json()["actor_id"] == config.ADMIN_USERNAME


def test_login_requires_both_fields(client):
    res = client.post("/auth/login", json={"username": config.ADMIN_USERNAME, "password": "  "})
    assert res.status_code == 400


def test_staff_session_stamps_its_actor_but_cannot_use_admin_routes(client, store):
    token, claims = issue_session_token(" door-2 ")
    assert claims["sub"] == "door-2"
    assert claims["role"] == "staff"
    headers = {"Authorization": f"Bearer {token}"}

    res = client.post("/checkin/scan", json={"payload": "E1-U1"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["checked_in_by"] == "door-2"
    assert store.get_registration("E1", "U1")["checked_in_by"] == "door-2"

    assert client.get("/events/E1/scan-events", headers=headers).status_code == 403
    assert client.delete("/events/E1/registrations/U3", headers=headers).status_code == 403
    assert store.get_registration("E1", "U3") is not None


def test_tampered_session_token_is_rejected():
    token, _ = issue_session_token("door-2")
    claims_b64, signature = token.split(".", 1)
    assert decode_session_token(token)["sub"] == "door-2"
    assert decode_session_token(f"{claims_b64}x.{signature}") is None
    assert decode_session_token("not-a-token") is None


def test_checkin_endpoints_require_session(client):
    assert client.post("/checkin/scan", json={"payload": "E1-U1"}).status_code == 401
    assert client.get("/events/E1/stats").status_code == 401
    assert client.get("/config/checkin").status_code == 401
    res = client.post("/checkin/scan", json={"payload": "E1-U1"}, headers={"Authorization": "Bearer forged.token"})
    assert res.status_code == 401


def test_scan_then_rescan(client, auth_headers, store):
    res = client.post("/checkin/scan", json={"payload": "E1-U1"}, headers=auth_headers)
    assert res.status_code == 200
    data = res.json()
    assert data["type"] == "success"
    assert data["checked_in_by"] == config.ADMIN_USERNAME
    assert data["registration"]["status"] == "attended"

    res = client.post("/checkin/scan", json={"payload": "E1-U1"}, headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["type"] == "already-checked"
    assert res.json()["checked_in_at"] == data["checked_in_at"]

    assert store.get_registration("E1", "U1")["checked_in_by"] == config.ADMIN_USERNAME


def test_scan_outcomes_are_distinct(client, auth_headers):
    res = client.post("/checkin/scan", json={"payload": "U1"}, headers=auth_headers)
    assert res.json()["type"] == "invalid-qr"

    res = client.post("/checkin/scan", json={"payload": "E1-U999"}, headers=auth_headers)
    assert res.json()["type"] == "not-found"

    res = client.post(
        "/checkin/scan",
        json={"payload": "https://winengrind.com/connect?to=U2&event=preview", "event_id": "E1"},
        headers=auth_headers,
    )
    assert res.json()["type"] == "success"
    assert res.json()["role"]["role"] == "vip"


def test_store_outage_returns_503(auth_headers):
    outage_store = InMemoryRegistrationStore()
    _seed(outage_store)
    outage_store.offline = True
    svc = CheckInService(outage_store)
    main.app.dependency_overrides[get_checkin_service] = lambda: svc
    try:
        with TestClient(main.app) as c:
            res = c.post("/checkin/manual", json={"event_id": "E1", "user_id": "U1"}, headers=auth_headers)
            assert res.status_code == 503
            assert res.json()["type"] == "error"
            assert res.json()["retryable"] is True

            res = c.get("/events/E1/door-list", headers=auth_headers)
            assert res.status_code == 503
    finally:
        svc.shutdown()


def test_manual_check_in_validation(client, auth_headers):
    res = client.post("/checkin/manual", json={"event_id": " ", "user_id": "U1"}, headers=auth_headers)
    assert res.status_code == 400

    res = client.post("/checkin/manual", json={"event_id": "E1", "user_id": "U3"}, headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["type"] == "success"
    assert res.json()["role"]["role"] == "speaker"


def test_lookup_by_email(client, auth_headers):
    res = client.get("/events/E1/lookup", params={"email": "ARI@example.com"}, headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["status"] == "found"
    assert res.json()["registration"]["user_id"] == "U2"

    res = client.get("/events/E1/lookup", params={"email": "ghost@example.com"}, headers=auth_headers)
    assert res.json()["status"] == "not-found"

    res = client.get("/events/E1/lookup", params={"email": " "}, headers=auth_headers)
    assert res.status_code == 400


def test_stats_and_door_list(client, auth_headers):
    client.post("/checkin/manual", json={"event_id": "E1", "user_id": "U2"}, headers=auth_headers)

    res = client.get("/events/E1/stats", headers=auth_headers)
    assert res.status_code == 200
    stats = res.json()
    assert stats["total"] == 3
    assert stats["checked_in"] == 1
    assert stats["awaiting_check_in"] == 2
    assert stats["available_spots"] == 1
    assert stats["occupancy_rate"] == 25

    res = client.get("/events/E1/stats", params={"cached": True}, headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["total"] == 3

    res = client.get("/events/E1/door-list", headers=auth_headers)
    assert res.status_code == 200
    door = res.json()
    assert [entry["registration"]["user_id"] for entry in door["registrations"]] == ["U3", "U2", "U1"]
    assert (door["total"], door["checked_in"], door["remaining"]) == (3, 1, 2)

    assert client.get("/events/E404/stats", headers=auth_headers).status_code == 404
    assert client.get("/events/E404/door-list", headers=auth_headers).status_code == 404


def test_scan_events_listing(client, auth_headers):
    client.post("/checkin/scan", json={"payload": "E1-U1"}, headers=auth_headers)
    client.post("/checkin/scan", json={"payload": "E1-U1"}, headers=auth_headers)

    res = client.get("/events/E1/scan-events", headers=auth_headers)
    assert res.status_code == 200
    assert [row["outcome"] for row in res.json()["rows"]] == ["already-checked", "success"]

    res = client.get("/events/E1/scan-events", params={"outcome": "success"}, headers=auth_headers)
    assert len(res.json()["rows"]) == 1

    res = client.get("/events/E1/scan-events", params={"outcome": "bogus"}, headers=auth_headers)
    assert res.status_code == 400


def test_registration_codes(client, auth_headers):
    res = client.get("/events/E1/registrations/U1/codes", headers=auth_headers)
    assert res.status_code == 200
    assert res.json()["checkin_code"] == "E1-U1"
    assert res.json()["connection_url"] == "https://winengrind.com/connect?to=U1&event=E1"

    assert client.get("/events/E1/registrations/U404/codes", headers=auth_headers).status_code == 404


def test_cancel_registration(client, auth_headers, store):
    client.post("/checkin/manual", json={"event_id": "E1", "user_id": "U1"}, headers=auth_headers)

    res = client.delete("/events/E1/registrations/U1", headers=auth_headers)
    assert res.status_code == 409

    res = client.delete("/events/E1/registrations/U3", headers=auth_headers)
    assert res.status_code == 200
    assert store.get_registration("E1", "U3") is None

    res = client.delete("/events/E1/registrations/U3", headers=auth_headers)
    assert res.status_code == 404


def test_checkin_config(client, auth_headers):
    res = client.get("/config/checkin", headers=auth_headers)
    assert res.status_code == 200
    data = res.json()
    assert data["bare_id_min_length"] == config.BARE_ID_MIN_LENGTH
    assert sorted(data["alert_roles"]) == sorted(config.ALERT_ROLES)
    assert "slack_webhook_url" not in data
