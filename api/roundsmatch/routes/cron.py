from fastapi import APIRouter, BackgroundTasks, Depends, Header

from .. import config
from ..deps import get_orchestrator, validate_cron_secret
from ..errors import MatchingError
from ..http_helpers import http_error
from ..services.orchestrator import ACCEPTED, BatchOrchestrator, RunTrigger
from ..services.schedule import get_week_start_date, is_schedule_due
from .admin import execute_in_background

router = APIRouter()


@router.post("/cron/weekly-matching")
def cron_weekly_matching(
    background_tasks: BackgroundTasks,
    x_cron_secret: str | None = Header(default=None, alias="X-Cron-Secret"),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
):
    validate_cron_secret(x_cron_secret, config.CRON_SECRET)

    settings = orchestrator.settings
    now = orchestrator.clock()
    if not is_schedule_due(now, settings.schedule, settings.timezone):
        return {
            "outcome": "not_due",
            "week_start_date": get_week_start_date(now, settings.timezone),
            "schedule": str(settings.schedule),
        }

    try:
        outcome = orchestrator.request_run(RunTrigger())
    except MatchingError as exc:
        raise http_error(exc) from exc
    if outcome.outcome == ACCEPTED:
        background_tasks.add_task(execute_in_background, orchestrator, outcome.run_id)
    return outcome.as_dict()
