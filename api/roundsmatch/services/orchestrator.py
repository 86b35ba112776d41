"""
Weekly batch orchestration.

A run moves through eligibility -> history -> scoring -> formation ->
persistence. Everything up to formation is read-only, so a fatal error there
fails the batch without writing any group. Persistence fans out one write per
group (groups are disjoint, so the writes share nothing), retries failed
groups once, and only then decides between `completed`, `partial` and
`failed`. Every group write first refreshes the heartbeat; once the watchdog
has failed the batch no further groups are written.

`request_run` is the idempotency guard and is cheap; `execute_run` does the
work and is meant to run in the background. `run` does both inline.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from ..errors import MatchingError, OperatorRequired, PartialPersistenceFailure, RunInProgress, RunNotFound, WatchdogTimeout
from .batches import BatchStore
from .candidates import Candidate
from .explanations import explain_group
from .formation import form_groups
from .history import HistoryStore, HistoryTracker
from .persistence import GroupRecord, GroupSink, build_group_record
from .report import build_run_report, run_summary
from .schedule import get_week_start_date
from .scoring import build_compatibility_edges
from .settings import MatchingSettings
from .state_machine import FAILED, NON_FAILED_STATUSES, RUNNING, batch_outcome, transition_batch_status

logger = logging.getLogger(__name__)

ACCEPTED = "accepted"
ALREADY_RUN = "already_run"

# Serialises the check-then-insert guard within this process; the partial
# unique indexes on match_batches cover other processes.
_request_lock = threading.Lock()


class _RunAbandoned(Exception):
    """The batch left `running` (watchdog sweep) while its groups were being written."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CandidateSource(Protocol):
    def __call__(self, week_start_date: date) -> list[Candidate]: ...

    def counts(self, week_start_date: date) -> dict[str, Any]: ...


class EventSink(Protocol):
    def no_match(self, user_ids: list[str], week_start_date: date, batch_id: str) -> None: ...

    def batch_event(self, event_type: str, week_start_date: date, batch_id: str | None, operator_id: str | None, payload: dict[str, Any]) -> None: ...


class _NullEvents:
    def no_match(self, user_ids, week_start_date, batch_id) -> None:
        return None

    def batch_event(self, event_type, week_start_date, batch_id, operator_id, payload) -> None:
        return None


@dataclass(frozen=True)
class RunTrigger:
    week_start_date: date | None = None
    forced: bool = False
    operator_id: str | None = None

    @property
    def kind(self) -> str:
        return "forced" if self.forced else "scheduled"


@dataclass(frozen=True)
class RunRequestOutcome:
    outcome: str
    week_start_date: date
    run_id: str | None
    status: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "week_start_date": self.week_start_date,
            "run_id": self.run_id,
            "status": self.status,
        }


class BatchOrchestrator:
    def __init__(
        self,
        settings: MatchingSettings,
        batch_store: BatchStore,
        candidate_source: CandidateSource,
        history_store: HistoryStore,
        sink: GroupSink,
        *,
        events: EventSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.batch_store = batch_store
        self.candidate_source = candidate_source
        self.history_store = history_store
        self.sink = sink
        self.events = events or _NullEvents()
        self.clock = clock

    def target_week(self, trigger: RunTrigger) -> date:
        if trigger.week_start_date is not None:
            return trigger.week_start_date
        return get_week_start_date(self.clock(), self.settings.timezone)

    def request_run(self, trigger: RunTrigger) -> RunRequestOutcome:
        operator_id = (trigger.operator_id or "").strip() or None
        if trigger.forced and not operator_id:
            raise OperatorRequired("forced runs require an operator id")

        week = self.target_week(trigger)
        with _request_lock:
            existing = self._blocking_run(week, trigger)
            if existing is not None:
                return self._already_run(week, trigger, existing)

            row = self.batch_store.create_run(
                week_start_date=week,
                algorithm_version=self.settings.algorithm_version,
                trigger=trigger.kind,
                forced=trigger.forced,
                operator_id=operator_id,
                now=self.clock(),
            )
            if row is None:
                # Another process inserted first; its row is authoritative.
                existing = self._blocking_run(week, trigger)
                if existing is None:
                    raise RunInProgress(f"could not start a run for week {week}")
                return self._already_run(week, trigger, existing)

        run_id = str(row["id"])
        logger.info("[BATCH] run accepted id=%s week=%s trigger=%s operator=%s", run_id, week, trigger.kind, operator_id)
        if trigger.forced:
            self.events.batch_event("force_run", week, run_id, operator_id, {"algorithm_version": self.settings.algorithm_version})
        return RunRequestOutcome(ACCEPTED, week, run_id, RUNNING)

    def _blocking_run(self, week: date, trigger: RunTrigger) -> dict[str, Any] | None:
        runs = self.batch_store.find_runs_for_week(week)
        for r in runs:
            if r["status"] == RUNNING:
                if trigger.forced:
                    raise RunInProgress(f"a run for week {week} is already running", details={"run_id": str(r["id"])})
                return r
        if trigger.forced:
            return None
        for r in runs:
            if r["status"] in NON_FAILED_STATUSES:
                return r
        return None

    def _already_run(self, week: date, trigger: RunTrigger, existing: dict[str, Any]) -> RunRequestOutcome:
        logger.info("[BATCH] run skipped week=%s trigger=%s existing=%s status=%s", week, trigger.kind, existing["id"], existing["status"])
        self.events.batch_event("run_skipped", week, str(existing["id"]), trigger.operator_id, {"existing_status": existing["status"]})
        return RunRequestOutcome(ALREADY_RUN, week, str(existing["id"]), existing["status"])

    def _checkpoint(self, run_id: str, deadline: datetime, stage: str) -> None:
        now = self.clock()
        if now > deadline:
            raise WatchdogTimeout(f"run exceeded {self.settings.watchdog_minutes} minutes during {stage}", details={"stage": stage})
        if not self.batch_store.touch_heartbeat(run_id, now):
            raise WatchdogTimeout(f"run is no longer running during {stage}", details={"stage": stage})
        logger.info("[MATCHING] stage done run=%s stage=%s", run_id, stage)

    def execute_run(self, run_id: str) -> dict[str, Any]:
        row = self.batch_store.get_run(run_id)
        if row is None:
            raise RunNotFound(f"run {run_id} not found")
        if row["status"] != RUNNING:
            return run_summary(row)

        week: date = row["week_start_date"]
        started = self.clock()
        deadline = started + timedelta(minutes=self.settings.watchdog_minutes)
        counts = {"eligible_count": 0, "groups_formed": 0, "users_placed": 0, "users_unplaced": 0}

        try:
            candidates = self.candidate_source(week)
            eligibility = {**self.candidate_source.counts(week), "eligible": len(candidates)}
            counts["eligible_count"] = len(candidates)
            counts["users_unplaced"] = len(candidates)
            self._checkpoint(run_id, deadline, "eligibility")

            history = HistoryTracker(self.history_store, week, self.settings.history_cooldown_weeks).load()
            self._checkpoint(run_id, deadline, "history")

            edges = build_compatibility_edges(candidates, self.settings.factor_weights, self.settings.algorithm_version)
            self._checkpoint(run_id, deadline, "scoring")

            formation = form_groups([c.user_id for c in candidates], edges, history.recent_pairs, self.settings.formation)
            self._checkpoint(run_id, deadline, "formation")
        except MatchingError as exc:
            return self._fail(run_id, exc, counts)
        except Exception as exc:
            logger.exception("[BATCH] run crashed id=%s", run_id)
            self._fail(run_id, MatchingError(str(exc) or exc.__class__.__name__), counts)
            raise

        by_id = {c.user_id: c for c in candidates}
        records = [
            build_group_record(
                batch_id=run_id,
                week_start_date=week,
                group=g,
                candidates_by_id=by_id,
                algorithm_version=self.settings.algorithm_version,
            )
            for g in formation.groups
        ]
        persisted, failures, abandoned = self._persist_all(run_id, records, history)
        if abandoned:
            logger.error(
                "[BATCH] run id=%s left running during persistence; stopped after %s of %s groups",
                run_id,
                len(persisted),
                len(records),
            )
            return run_summary(self.batch_store.get_run(run_id) or row)

        if formation.unplaced:
            self.events.no_match(list(formation.unplaced), week, run_id)

        edges_by_pair = {e.pair: e for e in edges}
        explanations = {g["groupId"]: explain_group(g["memberIds"], by_id, edges_by_pair) for g in persisted}
        placed = sum(len(g["memberIds"]) for g in persisted)
        counts.update(groups_formed=len(persisted), users_placed=placed, users_unplaced=len(candidates) - placed)
        report = build_run_report(
            eligibility=eligibility,
            edges=edges,
            formation=formation,
            persisted=persisted,
            failures=failures,
            settings=self.settings.public(),
            explanations=explanations,
        )

        status = transition_batch_status(RUNNING, batch_outcome(len(records), len(failures)))
        error_code = error_message = None
        if failures:
            partial = PartialPersistenceFailure(failures)
            error_code, error_message = partial.code, partial.message
            logger.warning("[BATCH] run id=%s %s status=%s", run_id, partial.message, status)

        finished_at = self.clock()
        if not self.batch_store.finish_run(
            run_id,
            status=status,
            now=finished_at,
            counts=counts,
            report=report,
            error_code=error_code,
            error_message=error_message,
        ):
            logger.warning("[BATCH] run id=%s was already terminal when it finished", run_id)

        duration_ms = int((finished_at - started).total_seconds() * 1000)
        logger.info(
            "[BATCH] run finished id=%s week=%s status=%s eligible=%s groups=%s placed=%s unplaced=%s duration_ms=%s",
            run_id,
            week,
            status,
            counts["eligible_count"],
            counts["groups_formed"],
            counts["users_placed"],
            counts["users_unplaced"],
            duration_ms,
        )
        return run_summary(self.batch_store.get_run(run_id) or row)

    def _persist_one(self, run_id: str, record: GroupRecord, history: HistoryTracker, stop: threading.Event) -> dict[str, Any]:
        # Each write first refreshes the heartbeat, which also confirms the batch is still running.
        if stop.is_set() or not self.batch_store.touch_heartbeat(run_id, self.clock()):
            stop.set()
            raise _RunAbandoned(run_id)
        self.sink.save_group(record)
        history.record(record.member_ids, batch_id=record.batch_id, match_id=record.group_id)
        return record.output()

    def _persist_all(
        self, run_id: str, records: list[GroupRecord], history: HistoryTracker
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]], bool]:
        if not records:
            return [], [], False

        done: dict[str, dict[str, Any]] = {}
        retry: list[GroupRecord] = []
        stop = threading.Event()
        workers = max(1, min(self.settings.persist_workers, len(records)))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_record = {executor.submit(self._persist_one, run_id, r, history, stop): r for r in records}
            for future in as_completed(future_to_record):
                record = future_to_record[future]
                try:
                    done[record.group_id] = future.result()
                except _RunAbandoned:
                    continue
                except Exception as exc:
                    logger.warning("[PERSIST] group write failed id=%s error=%s; will retry", record.group_id, exc)
                    retry.append(record)

        failures: list[dict[str, Any]] = []
        for record in sorted(retry, key=lambda r: r.group_id):
            if stop.is_set():
                break
            try:
                done[record.group_id] = self._persist_one(run_id, record, history, stop)
                logger.info("[PERSIST] group write succeeded on retry id=%s", record.group_id)
            except _RunAbandoned:
                break
            except Exception as exc:
                logger.error("[PERSIST] group write failed after retry id=%s error=%s", record.group_id, exc)
                failures.append(
                    {
                        "groupId": record.group_id,
                        "memberIds": list(record.member_ids),
                        "attempts": 2,
                        "error": str(exc) or exc.__class__.__name__,
                    }
                )

        persisted = [done[r.group_id] for r in records if r.group_id in done]
        if stop.is_set():
            logger.warning("[PERSIST] run id=%s is no longer running; remaining group writes skipped", run_id)
        return persisted, failures, stop.is_set()

    def _fail(self, run_id: str, exc: MatchingError, counts: dict[str, int]) -> dict[str, Any]:
        logger.error("[BATCH] run failed id=%s code=%s message=%s", run_id, exc.code, exc.message)
        self.batch_store.finish_run(
            run_id,
            status=transition_batch_status(RUNNING, "fail"),
            now=self.clock(),
            counts=counts,
            report={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
            error_code=exc.code,
            error_message=exc.message,
        )
        row = self.batch_store.get_run(run_id)
        return run_summary(row) if row else {"run_id": run_id, "status": FAILED, "error_code": exc.code}

    def run(self, trigger: RunTrigger) -> dict[str, Any]:
        requested = self.request_run(trigger)
        if requested.outcome != ACCEPTED:
            return requested.as_dict()
        summary = self.execute_run(requested.run_id)
        return {**requested.as_dict(), "status": summary.get("status"), "summary": summary}

    def fail_stuck_runs(self, now: datetime | None = None) -> list[str]:
        now = now or self.clock()
        cutoff = now - timedelta(minutes=self.settings.watchdog_minutes)
        failed: list[str] = []
        for row in self.batch_store.list_stale_running(cutoff):
            run_id = str(row["id"])
            timeout = WatchdogTimeout(f"no heartbeat since {row.get('heartbeat_at')}")
            if self.batch_store.finish_run(
                run_id,
                status=transition_batch_status(RUNNING, "timeout"),
                now=now,
                counts={"eligible_count": int(row.get("eligible_count") or 0)},
                report={"error": {"code": timeout.code, "message": timeout.message}},
                error_code=timeout.code,
                error_message=timeout.message,
            ):
                logger.warning("[WATCHDOG] failed stuck run id=%s week=%s heartbeat_at=%s", run_id, row.get("week_start_date"), row.get("heartbeat_at"))
                failed.append(run_id)
        return failed

    def get_run_summary(self, run_id: str) -> dict[str, Any]:
        row = self.batch_store.get_run(run_id)
        if row is None:
            raise RunNotFound(f"run {run_id} not found")
        return {**run_summary(row), "report": row.get("report") or {}}

    def get_week_summary(self, week_start_date: date) -> dict[str, Any]:
        runs = self.batch_store.find_runs_for_week(week_start_date)
        if not runs:
            raise RunNotFound(f"no runs for week {week_start_date}")
        current = next((r for r in runs if r["status"] in NON_FAILED_STATUSES), runs[0])
        return {
            "week_start_date": week_start_date,
            "current": run_summary(current),
            "runs": [run_summary(r) for r in runs],
        }
