from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field


class TriggerRunRequest(BaseModel):
    week: str | None = Field(default=None, description="YYYY-MM-DD or ISO week YYYY-Www; defaults to the current week")
    forced: bool = False
    operator_id: str | None = None


class TriggerRunResponse(BaseModel):
    outcome: str
    week_start_date: date
    run_id: str | None = None
    status: str | None = None


class RunSummary(BaseModel):
    run_id: str
    week_start_date: date | None = None
    status: str | None = None
    trigger: str | None = None
    forced: bool = False
    operator_id: str | None = None
    eligible_count: int = 0
    groups_formed: int = 0
    users_placed: int = 0
    users_unplaced: int = 0
    algorithm_version: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    error_code: str | None = None
    error_message: str | None = None
    report: dict[str, Any] = Field(default_factory=dict)


class WeekSummary(BaseModel):
    week_start_date: date
    current: RunSummary
    runs: list[RunSummary]


class WatchdogResponse(BaseModel):
    failed_run_ids: list[str]
