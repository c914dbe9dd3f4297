import json

import pytest

from spotifier.core.errors import SnapshotFormatError
from spotifier.workflows.models import Period, Semester
from spotifier.workflows.session_store import SessionSnapshot, SessionState, SessionStore


def _authenticated_store():
    store = SessionStore()
    store.begin_authentication()
    store.mark_authenticated({".SPOT.upi.edu": {"laravel_session": "s-1"}})
    return store


def test_snapshot_round_trips_through_json():
    store = _authenticated_store()
    store.select_period("20251", {"spot.upi.edu": {"XSRF-TOKEN": "x-2"}})
    restored = SessionSnapshot.from_json(store.snapshot().to_json())
    assert restored.period == "20251"
    assert restored.cookies == {"spot.upi.edu": {"laravel_session": "s-1", "XSRF-TOKEN": "x-2"}}
    assert restored.saved_at.endswith("Z")


def test_snapshot_of_unauthenticated_store_is_empty():
    assert SessionStore().snapshot().is_empty


def test_restore_sets_authenticated_state():
    store = SessionStore()
    store.restore(SessionSnapshot(cookies={"spot.upi.edu": {"laravel_session": "s-1"}}, period="20242"))
    assert store.state is SessionState.AUTHENTICATED
    assert store.period == "20242"


def test_restore_of_empty_snapshot_leaves_store_unchanged():
    store = _authenticated_store()
    with pytest.raises(SnapshotFormatError):
        store.restore(SessionSnapshot(cookies={"spot.upi.edu": {}}))
    assert store.state is SessionState.AUTHENTICATED
    assert store.cookies == {"spot.upi.edu": {"laravel_session": "s-1"}}


@pytest.mark.parametrize(
    "text",
    [
        "not json",
        "[]",
        json.dumps({"version": 99, "cookies": {}}),
        json.dumps({"version": 1, "cookies": []}),
        json.dumps({"version": 1, "cookies": {"spot.upi.edu": {"a": 1}}}),
        json.dumps({"version": 1, "cookies": {}, "period": "2025-1"}),
    ],
)
def test_malformed_snapshots_are_rejected(text):
    with pytest.raises(SnapshotFormatError):
        SessionSnapshot.from_json(text)


def test_snapshot_file_round_trip(tmp_path):
    path = tmp_path / "nested" / "session.json"
    SessionSnapshot(cookies={"spot.upi.edu": {"laravel_session": "s-1"}}, period="20251").write(path)
    assert SessionSnapshot.read(path).period == "20251"
    assert not list(path.parent.glob("*.tmp"))


def test_reading_missing_snapshot_file_is_a_format_error(tmp_path):
    with pytest.raises(SnapshotFormatError):
        SessionSnapshot.read(tmp_path / "missing.json")


def test_invalidate_and_reset_clear_the_session():
    store = _authenticated_store()
    store.select_period("20251")
    store.invalidate()
    assert store.state is SessionState.INVALIDATED
    assert store.cookies == {} and store.period is None
    store.reset()
    assert store.state is SessionState.UNAUTHENTICATED


def test_period_codes():
    assert Period.parse("20252") == Period(2025, Semester.EVEN)
    assert str(Period(2024, Semester.SHORT)) == "20243"
    assert Period.from_academic_year("2025/2026 - Genap").format() == "20252"
    assert Period.from_academic_year("2024/2025 - SP").semester is Semester.SHORT
    for bad in ("2025", "20254", "abcd1", ""):
        with pytest.raises(ValueError):
            Period.parse(bad)
    with pytest.raises(ValueError):
        Period.from_academic_year("2025/2026 - Unknown")


def test_generation_changes_when_the_session_is_replaced():
    store = _authenticated_store()
    first = store.generation
    store.select_period("20251")
    assert store.generation == first
    store.invalidate()
    assert store.generation == first + 1
    store.restore(SessionSnapshot(cookies={"spot.upi.edu": {"laravel_session": "s-2"}}))
    assert store.generation == first + 2
    store.reset()
    assert store.generation == first + 3
