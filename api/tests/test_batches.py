import json
from datetime import date, datetime, timezone

from sqlalchemy.exc import IntegrityError

from roundsmatch.services.batches import SqlBatchStore

from fakes import FakeDB, uid

WEEK = date(2026, 3, 9)
NOW = datetime(2026, 3, 12, 20, 0, tzinfo=timezone.utc)


class _ConflictDB(FakeDB):
    def __init__(self):
        super().__init__()
        self.rolled_back = False

    def execute(self, stmt, params=None):
        raise IntegrityError(str(stmt), params, Exception("duplicate key value violates unique constraint"))

    def rollback(self):
        self.rolled_back = True


def test_create_run_inserts_running_row():
    db = FakeDB(first={"id": uid(100), "status": "running", "week_start_date": WEEK, "report": "{}"})
    row = SqlBatchStore(lambda: db).create_run(
        week_start_date=WEEK,
        algorithm_version="groups-v2",
        trigger="scheduled",
        forced=False,
        operator_id=None,
        now=NOW,
    )
    assert row["id"] == uid(100)
    assert row["report"] == {}
    sql, params = db.calls[0]
    assert "INSERT INTO match_batches" in sql
    assert params["status"] == "running"
    assert params["operator_id"] == ""
    assert db.commits == 1


def test_create_run_returns_none_when_unique_index_rejects_insert():
    db = _ConflictDB()
    row = SqlBatchStore(lambda: db).create_run(
        week_start_date=WEEK,
        algorithm_version="groups-v2",
        trigger="forced",
        forced=True,
        operator_id="ops-1",
        now=NOW,
    )
    assert row is None
    assert db.rolled_back


def test_finish_run_only_updates_running_rows():
    db = FakeDB()
    finished = SqlBatchStore(lambda: db).finish_run(
        uid(100),
        status="partial",
        now=NOW,
        counts={"eligible_count": 10, "groups_formed": 3, "users_placed": 7, "users_unplaced": 3},
        report={"failures": [{"groupId": uid(5)}]},
        error_code="partial_persistence_failure",
    )
    assert finished is True
    sql, params = db.calls[0]
    assert "AND status = 'running'" in sql
    assert params["status"] == "partial"
    assert params["users_placed"] == 7
    assert json.loads(params["report"]) == {"failures": [{"groupId": uid(5)}]}
    assert params["error_message"] == ""


def test_list_stale_running_filters_by_heartbeat():
    db = FakeDB(rows=[{"id": uid(7), "status": "running", "report": {}}])
    rows = SqlBatchStore(lambda: db).list_stale_running(NOW)
    assert rows == [{"id": uid(7), "status": "running", "report": {}}]
    sql, params = db.calls[0]
    assert "heartbeat_at < :cutoff" in sql
    assert params == {"cutoff": NOW}


def test_touch_heartbeat_reports_whether_run_is_still_running():
    db = FakeDB()
    store = SqlBatchStore(lambda: db)
    assert store.touch_heartbeat(uid(100), NOW) is True
    sql, params = db.calls[0]
    assert "SET heartbeat_at = :now" in sql
    assert "AND status = 'running'" in sql
    assert params == {"id": uid(100), "now": NOW}

    db.rowcount = 0
    assert store.touch_heartbeat(uid(100), NOW) is False
