from datetime import date

import pytest

from roundsmatch.services.candidates import GenderPreference
from roundsmatch.services.formation import FormedGroup
from roundsmatch.services.history import HistoryTracker
from roundsmatch.services.persistence import (
    DIRECT_MATCH_VERSION,
    SqlGroupSink,
    build_group_record,
    create_direct_match,
    deterministic_group_id,
)

from fakes import FakeDB, FakeHistoryStore, FakeSink, make_candidate, uid

WEEK = date(2026, 3, 9)


def _record():
    a = make_candidate(1, first_name="Ana", specialties=["cardiology"])
    b = make_candidate(2, first_name="Ben", specialties=["oncology"])
    group = FormedGroup(members=(uid(1), uid(2)), average_score=83, pair_scores=((uid(1), uid(2), 83),), formation_pass=1)
    return build_group_record(
        batch_id=uid(100),
        week_start_date=WEEK,
        group=group,
        candidates_by_id={a.user_id: a, b.user_id: b},
        algorithm_version="groups-v2",
    )


def test_group_id_is_deterministic_per_batch_and_members():
    assert deterministic_group_id(uid(100), [uid(2), uid(1)]) == deterministic_group_id(uid(100), [uid(1), uid(2)])
    assert deterministic_group_id(uid(100), [uid(1), uid(2)]) != deterministic_group_id(uid(101), [uid(1), uid(2)])


def test_group_record_shape():
    record = _record()
    assert record.group_name == "Week of 2026-03-09"
    assert "Ana, Ben" in record.welcome_message
    assert "cardiology, oncology" in record.welcome_message
    assert record.output() == {
        "groupId": record.group_id,
        "memberIds": [uid(1), uid(2)],
        "averageCompatibility": 83,
        "batchId": uid(100),
    }


def test_sql_sink_writes_group_in_one_transaction():
    db = FakeDB()
    record = _record()
    assert SqlGroupSink(lambda: db).save_group(record) == record.group_id

    statements = [sql for sql, _ in db.calls]
    assert sum("INSERT INTO matches" in s for s in statements) == 1
    assert sum("INSERT INTO match_members" in s for s in statements) == 2
    assert sum("INSERT INTO chat_channels" in s for s in statements) == 1
    assert sum("INSERT INTO notification_outbox" in s for s in statements) == 2
    assert sum("INSERT INTO match_events" in s for s in statements) == 2
    assert all("ON CONFLICT" in s for s in statements if "match_events" not in s)
    assert db.commits == 1

    outbox_keys = [p["idempotency_key"] for s, p in db.calls if "notification_outbox" in s]
    assert outbox_keys == [f"group_ready:{record.group_id}:{uid(1)}", f"group_ready:{record.group_id}:{uid(2)}"]
    match_params = db.calls[0][1]
    assert match_params["group_name"] == "Week of 2026-03-09"
    assert match_params["member_count"] == 2


def test_direct_match_bypasses_formation_and_records_history():
    sink = FakeSink()
    store = FakeHistoryStore()
    tracker = HistoryTracker(store, WEEK, 6)
    a = make_candidate(5, first_name="Cat", city="NY")
    b = make_candidate(4, first_name="Dan", city="NY")

    record = create_direct_match(a, b, week_start_date=WEEK, sink=sink, history=tracker)

    assert record.member_ids == (uid(4), uid(5))
    assert record.algorithm_version == DIRECT_MATCH_VERSION
    assert record.batch_id == ""
    assert record.group_name == "Cat & Dan"
    assert sink.saved[record.group_id] is record
    assert tracker.was_recently_grouped(uid(4), uid(5))
    # Direct matches do not count as weekly placements.
    assert sink.placed_for_week(WEEK) == set()


def test_direct_match_rejects_same_user():
    a = make_candidate(5)
    with pytest.raises(ValueError):
        create_direct_match(a, a, week_start_date=WEEK, sink=FakeSink(), history=HistoryTracker(FakeHistoryStore(), WEEK, 6))


def test_direct_match_refuses_hard_excluded_pair():
    sink = FakeSink()
    store = FakeHistoryStore()
    picky = make_candidate(6, gender="f", gender_preference=GenderPreference.SAME_GENDER_ONLY)
    other = make_candidate(7, gender="m")

    with pytest.raises(ValueError, match="same_gender_only"):
        create_direct_match(picky, other, week_start_date=WEEK, sink=sink, history=HistoryTracker(store, WEEK, 6))
    assert sink.saved == {}
    assert store.entries == []
