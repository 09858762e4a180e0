import threading

import pytest

from backend.services.stats import StatsBoard, compute_event_stats, occupancy_rate
from database.memory import InMemoryRegistrationStore
from database.store import new_event, new_registration


class HeldStore(InMemoryRegistrationStore):
    """Pauses the next registration scan after reading it, until released."""

    def __init__(self):
        super().__init__()
        self.hold_next = False
        self.reading = threading.Event()
        self.release = threading.Event()

    def list_registrations(self, event_id):
        rows = super().list_registrations(event_id)
        if self.hold_next:
            self.hold_next = False
            self.reading.set()
            self.release.wait(timeout=5)
        return rows


def _registrations(count: int, checked_in: int):
    rows = []
    for idx in range(count):
        reg = new_registration("E1", f"U{idx}", name=f"Guest {idx}", email=f"g{idx}@example.com")
        if idx < checked_in:
            reg.update({"checked_in": True, "checked_in_at": "2026-01-01T18:00:00+00:00", "status": "attended"})
        rows.append(reg)
    return rows


@pytest.mark.parametrize(
    ("count", "checked_in", "capacity"),
    [(0, 0, 100), (5, 2, 10), (12, 12, 10), (7, 3, 0)],
)
def test_awaiting_plus_checked_in_equals_total(count, checked_in, capacity):
    stats = compute_event_stats(new_event("E1", name="Launch", capacity=capacity), _registrations(count, checked_in))
    assert stats["awaiting_check_in"] + stats["checked_in"] == stats["total"] == count
    assert stats["checked_in"] == checked_in
    assert stats["available_spots"] == max(0, capacity - count)
    assert stats["occupancy_rate"] == occupancy_rate(checked_in, capacity)


def test_occupancy_rounds_half_up():
    assert occupancy_rate(1, 8) == 13  # 12.5
    assert occupancy_rate(5, 200) == 3  # 2.5
    assert occupancy_rate(1, 3) == 33
    assert occupancy_rate(3, 3) == 100


def test_occupancy_is_zero_without_capacity():
    assert occupancy_rate(4, 0) == 0
    assert occupancy_rate(4, -5) == 0


def test_missing_event_uses_default_capacity():
    stats = compute_event_stats(None, _registrations(3, 1))
    assert stats["capacity"] == 100
    assert stats["event_id"] == "E1"
    assert stats["available_spots"] == 97


def test_stats_board_refresh_and_snapshot():
    store = InMemoryRegistrationStore()
    store.add_event(new_event("E1", name="Launch", capacity=4))
    for reg in _registrations(3, 0):
        store.add_registration(reg)

    board = StatsBoard(store)
    try:
        assert board.snapshot("E1") is None

        first = board.refresh("E1")
        assert (first["total"], first["checked_in"], first["occupancy_rate"]) == (3, 0, 0)

        store.conditional_set_checked_in("E1", "U0", "A1", checked_in_at="2026-01-01T18:00:00+00:00")
        assert board.snapshot("E1")["checked_in"] == 0  # stale until refreshed

        board.schedule_refresh("E1").result(timeout=5)
        snapshot = board.snapshot("E1")
        assert snapshot["checked_in"] == 1
        assert snapshot["awaiting_check_in"] == 2
        assert snapshot["occupancy_rate"] == 25
    finally:
        board.shutdown()


def test_background_refresh_failure_is_logged_not_raised():
    store = InMemoryRegistrationStore()
    store.offline = True
    board = StatsBoard(store)
    try:
        assert board.schedule_refresh("E1").result(timeout=5) is None
        assert board.snapshot("E1") is None
    finally:
        board.shutdown()


def test_slow_earlier_refresh_does_not_overwrite_newer_snapshot():
    store = HeldStore()
    store.add_event(new_event("E1", name="Launch", capacity=4))
    for reg in _registrations(3, 0):
        store.add_registration(reg)

    board = StatsBoard(store)
    try:
        store.hold_next = True
        slow = board.schedule_refresh("E1")
        assert store.reading.wait(timeout=5)

        store.conditional_set_checked_in("E1", "U0", "A1", checked_in_at="2026-01-01T18:00:00+00:00")
        assert board.refresh("E1")["checked_in"] == 1

        store.release.set()
        slow.result(timeout=5)
        assert board.snapshot("E1")["checked_in"] == 1
    finally:
        store.release.set()
        board.shutdown()
