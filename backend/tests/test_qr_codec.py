import pytest

from backend.services.qr_codec import (
    encode_checkin_code,
    encode_connection_url,
    parse_qr_payload,
)

LONG_USER_ID = "kZ3vQ9pL2mXa7"


def test_composite_code_wins_over_bare_id():
    identity, reason = parse_qr_payload("evt123-user456", "other-event")
    assert reason == "ok"
    assert identity == {"event_id": "evt123", "user_id": "user456", "format": "composite"}


def test_composite_with_empty_part_falls_through_to_bare_id():
    identity, reason = parse_qr_payload("-" + LONG_USER_ID, "E1")
    assert reason == "ok"
    assert identity == {"event_id": "E1", "user_id": "-" + LONG_USER_ID, "format": "bare-id"}

    assert parse_qr_payload("evt123-", "E1") == (None, "bare_id_too_short")
    assert parse_qr_payload("-" + LONG_USER_ID, None) == (None, "no_event_selected")


def test_bare_id_accepts_any_characters():
    for user_id in ("kZ3vQ9pL2m+Xa7", "user:abc@example.com", "guest list 42"):
        identity, reason = parse_qr_payload(user_id, "E1")
        assert reason == "ok"
        assert identity == {"event_id": "E1", "user_id": user_id, "format": "bare-id"}



def test_payload_is_stripped_and_empty_is_invalid():
    identity, _ = parse_qr_payload("  E1-U1 \n")
    assert identity is not None
    assert (identity["event_id"], identity["user_id"]) == ("E1", "U1")

    assert parse_qr_payload("   ") == (None, "empty_payload")
    assert parse_qr_payload(None) == (None, "empty_payload")


def test_connection_url_with_event():
    identity, reason = parse_qr_payload("https://winengrind.com/connect?to=U1&event=E9", "E1")
    assert reason == "ok"
    assert identity == {"event_id": "E9", "user_id": "U1", "format": "connect-url"}


@pytest.mark.parametrize(
    "url",
    [
        "https://winengrind.com/connect?to=U1&event=preview",
        "https://winengrind.com/connect?to=U1",
        "http://www.winengrind.com/connect/?to=U1",
    ],
)
def test_connection_url_falls_back_to_selected_event(url):
    identity, reason = parse_qr_payload(url, "E1")
    assert reason == "ok"
    assert identity is not None
    assert (identity["event_id"], identity["user_id"]) == ("E1", "U1")

    assert parse_qr_payload(url, None) == (None, "no_event_selected")


def test_connection_url_without_user_is_invalid():
    assert parse_qr_payload("https://winengrind.com/connect?event=E1", "E1") == (None, "connect_missing_user")


def test_foreign_url_is_not_a_connection_link():
    identity, reason = parse_qr_payload("https://example.org/connect?to=U1&event=E1", "E1")
    assert reason == "ok"
    assert identity is not None
    assert identity["format"] == "bare-id"
    assert identity["user_id"] == "https://example.org/connect?to=U1&event=E1"


def test_url_with_one_dash_is_not_a_composite_code():
    identity, _ = parse_qr_payload("https://winengrind.com/connect?to=user-42&event=E9", "E1")
    assert identity == {"event_id": "E9", "user_id": "user-42", "format": "connect-url"}



def test_custom_connect_hosts():
    identity, _ = parse_qr_payload(
        "https://staging.example.org/connect?to=U1&event=E1",
        connect_hosts=["staging.example.org"],
    )
    assert identity is not None
    assert identity["format"] == "connect-url"


def test_bare_id_uses_selected_event():
    identity, reason = parse_qr_payload(LONG_USER_ID, "E1")
    assert reason == "ok"
    assert identity == {"event_id": "E1", "user_id": LONG_USER_ID, "format": "bare-id"}


def test_bare_id_with_several_dashes_is_not_composite():
    identity, _ = parse_qr_payload("a1b2-c3d4-e5f6", "E1")
    assert identity is not None
    assert identity["format"] == "bare-id"
    assert identity["user_id"] == "a1b2-c3d4-e5f6"


def test_bare_id_without_event_selected_is_invalid():
    assert parse_qr_payload("U1", None) == (None, "bare_id_too_short")
    assert parse_qr_payload(LONG_USER_ID, None) == (None, "no_event_selected")
    assert parse_qr_payload(LONG_USER_ID, "   ") == (None, "no_event_selected")


def test_bare_id_minimum_length():
    assert parse_qr_payload("abcdefghij", "E1") == (None, "bare_id_too_short")
    identity, _ = parse_qr_payload("abcdefghijk", "E1")
    assert identity is not None

    identity, _ = parse_qr_payload("U1", "E1", bare_id_min_length=2)
    assert identity is not None
    assert identity["user_id"] == "U1"


def test_json_payload():
    identity, reason = parse_qr_payload('{"eventId": "E1", "userId": "U1", "name": "Dana"}', None)
    assert reason == "ok"
    assert identity == {"event_id": "E1", "user_id": "U1", "format": "json"}


@pytest.mark.parametrize(
    ("payload", "reason"),
    [
        ('{"userId": "U1"}', "json_missing_ids"),
        ('{"eventId": "E1", "userId": ""}', "json_missing_ids"),
        ('{"eventId": 7, "userId": "U1"}', "json_missing_ids"),
        ("{not json", "malformed_json"),
    ],
)
def test_incomplete_json_payloads_are_invalid(payload, reason):
    assert parse_qr_payload(payload, "E1") == (None, reason)


@pytest.mark.parametrize(
    ("event_id", "user_id"),
    [
        ("E1", "U1"),
        ("evt_2026.spring", "kZ3vQ9pL2mXa7"),
    ],
)
def test_encoders_round_trip(event_id, user_id):
    identity, _ = parse_qr_payload(encode_checkin_code(event_id, user_id))
    assert identity is not None
    assert (identity["event_id"], identity["user_id"]) == (event_id, user_id)

    identity, _ = parse_qr_payload(encode_connection_url(user_id, event_id))
    assert identity is not None
    assert (identity["event_id"], identity["user_id"]) == (event_id, user_id)


def test_connection_url_without_event_uses_preview_sentinel():
    url = encode_connection_url("U1")
    assert url == "https://winengrind.com/connect?to=U1&event=preview"

    identity, _ = parse_qr_payload(url, "E5")
    assert identity is not None
    assert identity["event_id"] == "E5"


def test_checkin_code_rejects_ids_that_cannot_round_trip():
    with pytest.raises(ValueError):
        encode_checkin_code("E-1", "U1")
    with pytest.raises(ValueError):
        encode_checkin_code("E1", "")
    with pytest.raises(ValueError):
        encode_connection_url("  ")
