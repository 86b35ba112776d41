import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Body, Depends
from fastapi.encoders import jsonable_encoder

from ..auth.admin_deps import require_admin_role
from ..deps import get_orchestrator, parse_week_or_400
from ..errors import MatchingError
from ..http_helpers import http_error, parse_run_id
from ..schemas import RunSummary, TriggerRunRequest, TriggerRunResponse, WatchdogResponse, WeekSummary
from ..services.orchestrator import ACCEPTED, BatchOrchestrator, RunTrigger
from ..services.schedule import next_scheduled_run

logger = logging.getLogger(__name__)

router = APIRouter()


def execute_in_background(orchestrator: BatchOrchestrator, run_id: str) -> None:
    try:
        orchestrator.execute_run(run_id)
    except MatchingError as exc:
        logger.error("[BATCH] background run %s ended with %s: %s", run_id, exc.code, exc.message)


@router.post("/admin/matching/run", response_model=TriggerRunResponse)
def admin_trigger_run(
    background_tasks: BackgroundTasks,
    payload: TriggerRunRequest | None = Body(default=None),
    admin_user: dict[str, Any] = Depends(require_admin_role("operator")),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    payload = payload or TriggerRunRequest()
    trace_id = str(uuid.uuid4())
    operator_id = admin_user.get("id") or payload.operator_id
    trigger = RunTrigger(
        week_start_date=parse_week_or_400(payload.week),
        forced=payload.forced,
        operator_id=operator_id,
    )
    try:
        outcome = orchestrator.request_run(trigger)
    except MatchingError as exc:
        raise http_error(exc, trace_id=trace_id) from exc

    if outcome.outcome == ACCEPTED:
        background_tasks.add_task(execute_in_background, orchestrator, outcome.run_id)
    return TriggerRunResponse(**outcome.as_dict())


@router.get("/admin/matching/runs/{run_id}", response_model=RunSummary)
def admin_get_run(
    run_id: str,
    _admin: dict[str, Any] = Depends(require_admin_role("viewer")),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.get_run_summary(parse_run_id(run_id))
    except MatchingError as exc:
        raise http_error(exc) from exc


@router.get("/admin/matching/weeks/{week}", response_model=WeekSummary)
def admin_get_week(
    week: str,
    _admin: dict[str, Any] = Depends(require_admin_role("viewer")),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.get_week_summary(parse_week_or_400(week))
    except MatchingError as exc:
        raise http_error(exc) from exc


@router.post("/admin/matching/watchdog", response_model=WatchdogResponse)
def admin_run_watchdog(
    _admin: dict[str, Any] = Depends(require_admin_role("operator")),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    return WatchdogResponse(failed_run_ids=orchestrator.fail_stuck_runs())


@router.get("/admin/matching/config")
def admin_matching_config(
    _admin: dict[str, Any] = Depends(require_admin_role("viewer")),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    settings = orchestrator.settings
    now = datetime.now(timezone.utc)
    return jsonable_encoder(
        {
            **settings.public(),
            "next_scheduled_run": next_scheduled_run(now, settings.schedule, settings.timezone),
        }
    )
