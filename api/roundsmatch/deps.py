from datetime import date

from fastapi import HTTPException

from .database import SessionLocal
from .errors import InvalidConfiguration
from .http_helpers import http_error
from .services.batches import SqlBatchStore
from .services.eligibility import SqlCandidateSource
from .services.events import SqlEventSink
from .services.history import SqlHistoryStore
from .services.orchestrator import BatchOrchestrator
from .services.persistence import SqlGroupSink
from .services.schedule import parse_week_identifier
from .services.settings import load_matching_settings


def build_orchestrator(session_factory=SessionLocal) -> BatchOrchestrator:
    return BatchOrchestrator(
        load_matching_settings(),
        SqlBatchStore(session_factory),
        SqlCandidateSource(session_factory),
        SqlHistoryStore(session_factory),
        SqlGroupSink(session_factory),
        events=SqlEventSink(session_factory),
    )


def get_orchestrator() -> BatchOrchestrator:
    try:
        return build_orchestrator()
    except InvalidConfiguration as exc:
        raise http_error(exc) from exc


def validate_cron_secret(token: str | None, cron_secret: str | None) -> None:
    if not cron_secret or not token or token != cron_secret:
        raise HTTPException(status_code=401, detail="Invalid cron secret")


def parse_week_or_400(raw: str | None) -> date | None:
    if raw is None or not raw.strip():
        return None
    try:
        return parse_week_identifier(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="week must be YYYY-MM-DD or YYYY-Www")
