from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from .state_machine import RUNNING

logger = logging.getLogger(__name__)

BATCH_COLUMNS = """
  id,
  week_start_date,
  algorithm_version,
  trigger,
  forced,
  operator_id,
  status,
  eligible_count,
  groups_formed,
  users_placed,
  users_unplaced,
  duration_ms,
  report,
  error_code,
  error_message,
  started_at,
  heartbeat_at,
  completed_at
"""


class BatchStore(Protocol):
    def find_runs_for_week(self, week_start_date: date) -> list[dict[str, Any]]: ...

    def create_run(
        self,
        *,
        week_start_date: date,
        algorithm_version: str,
        trigger: str,
        forced: bool,
        operator_id: str | None,
        now: datetime,
    ) -> dict[str, Any] | None: ...

    def get_run(self, run_id: str) -> dict[str, Any] | None: ...

    def touch_heartbeat(self, run_id: str, now: datetime) -> bool: ...

    def finish_run(
        self,
        run_id: str,
        *,
        status: str,
        now: datetime,
        counts: dict[str, int] | None = None,
        report: dict[str, Any] | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> bool: ...

    def list_stale_running(self, cutoff: datetime) -> list[dict[str, Any]]: ...


def _row(row) -> dict[str, Any]:
    out = dict(row)
    out["id"] = str(out["id"])
    report = out.get("report")
    if isinstance(report, str):
        out["report"] = json.loads(report)
    return out


class SqlBatchStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def find_runs_for_week(self, week_start_date: date) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            rows = db.execute(
                text(
                    f"""
                    SELECT {BATCH_COLUMNS}
                    FROM match_batches
                    WHERE week_start_date = :week_start_date
                    ORDER BY started_at DESC
                    """
                ),
                {"week_start_date": week_start_date},
            ).mappings().all()
        return [_row(r) for r in rows]

    def create_run(
        self,
        *,
        week_start_date: date,
        algorithm_version: str,
        trigger: str,
        forced: bool,
        operator_id: str | None,
        now: datetime,
    ) -> dict[str, Any] | None:
        """Insert a `running` batch; None when a unique index says another run got there first."""
        run_id = str(uuid.uuid4())
        with self.session_factory() as db:
            try:
                row = db.execute(
                    text(
                        f"""
                        INSERT INTO match_batches
                          (id, week_start_date, algorithm_version, trigger, forced, operator_id, status, started_at, heartbeat_at)
                        VALUES
                          (CAST(:id AS uuid), :week_start_date, :algorithm_version, :trigger, :forced, NULLIF(:operator_id, ''), :status, :now, :now)
                        RETURNING {BATCH_COLUMNS}
                        """
                    ),
                    {
                        "id": run_id,
                        "week_start_date": week_start_date,
                        "algorithm_version": algorithm_version,
                        "trigger": trigger,
                        "forced": forced,
                        "operator_id": operator_id or "",
                        "status": RUNNING,
                        "now": now,
                    },
                ).mappings().first()
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.info("[BATCH] insert rejected by unique index week=%s trigger=%s", week_start_date, trigger)
                return None
        return _row(row) if row else None

    def get_run(self, run_id: str) -> dict[str, Any] | None:
        with self.session_factory() as db:
            row = db.execute(
                text(f"SELECT {BATCH_COLUMNS} FROM match_batches WHERE id = CAST(:id AS uuid)"),
                {"id": run_id},
            ).mappings().first()
        return _row(row) if row else None

    def touch_heartbeat(self, run_id: str, now: datetime) -> bool:
        """False once the run has left `running`, e.g. after a watchdog sweep."""
        with self.session_factory() as db:
            result = db.execute(
                text(
                    """
                    UPDATE match_batches
                    SET heartbeat_at = :now
                    WHERE id = CAST(:id AS uuid)
                      AND status = 'running'
                    """
                ),
                {"id": run_id, "now": now},
            )
            db.commit()
        return bool(result.rowcount)

    def finish_run(
        self,
        run_id: str,
        *,
        status: str,
        now: datetime,
        counts: dict[str, int] | None = None,
        report: dict[str, Any] | None = None,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        counts = counts or {}
        with self.session_factory() as db:
            result = db.execute(
                text(
                    """
                    UPDATE match_batches
                    SET status = :status,
                        eligible_count = :eligible_count,
                        groups_formed = :groups_formed,
                        users_placed = :users_placed,
                        users_unplaced = :users_unplaced,
                        duration_ms = CAST(EXTRACT(EPOCH FROM (:now - started_at)) * 1000 AS integer),
                        report = CAST(:report AS jsonb),
                        error_code = NULLIF(:error_code, ''),
                        error_message = NULLIF(:error_message, ''),
                        heartbeat_at = :now,
                        completed_at = :now
                    WHERE id = CAST(:id AS uuid)
                      AND status = 'running'
                    """
                ),
                {
                    "id": run_id,
                    "status": status,
                    "eligible_count": int(counts.get("eligible_count", 0)),
                    "groups_formed": int(counts.get("groups_formed", 0)),
                    "users_placed": int(counts.get("users_placed", 0)),
                    "users_unplaced": int(counts.get("users_unplaced", 0)),
                    "report": json.dumps(report or {}, default=str),
                    "error_code": error_code or "",
                    "error_message": error_message or "",
                    "now": now,
                },
            )
            db.commit()
        return bool(result.rowcount)

    def list_stale_running(self, cutoff: datetime) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            rows = db.execute(
                text(
                    f"""
                    SELECT {BATCH_COLUMNS}
                    FROM match_batches
                    WHERE status = 'running'
                      AND heartbeat_at < :cutoff
                    ORDER BY started_at
                    """
                ),
                {"cutoff": cutoff},
            ).mappings().all()
        return [_row(r) for r in rows]
