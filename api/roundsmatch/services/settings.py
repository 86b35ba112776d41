from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .. import config
from ..errors import InvalidConfiguration
from .formation import FormationParams
from .schedule import WeeklySlot, parse_schedule
from .scoring import WEIGHT_TABLES, resolve_weight_table, validate_weights


@dataclass(frozen=True)
class MatchingSettings:
    algorithm_version: str
    factor_weights: dict[str, float]
    formation: FormationParams
    history_cooldown_weeks: int
    schedule: WeeklySlot
    timezone: str
    watchdog_minutes: int
    persist_workers: int

    def public(self) -> dict[str, Any]:
        return {
            "algorithm_version": self.algorithm_version,
            "factor_weights": dict(self.factor_weights),
            "min_group_size": self.formation.min_size,
            "max_group_size": self.formation.max_size,
            "target_group_size": self.formation.target_size,
            "first_pass_min_score": self.formation.first_pass_min_score,
            "second_pass_min_score": self.formation.second_pass_min_score,
            "history_cooldown_weeks": self.history_cooldown_weeks,
            "schedule_day_and_time": str(self.schedule),
            "timezone": self.timezone,
            "watchdog_minutes": self.watchdog_minutes,
        }


def _collect_errors(
    *,
    base_version: str,
    weights_override: dict[str, Any] | None,
    min_size: int,
    max_size: int,
    target_size: int,
    first_pass_min_score: int,
    second_pass_min_score: int,
    cooldown_weeks: int,
    schedule: str,
    timezone: str,
    watchdog_minutes: int,
    persist_workers: int,
) -> list[dict[str, Any]]:
    errors: list[dict[str, Any]] = []
    if weights_override:
        errors.extend(validate_weights(weights_override))
    elif base_version not in WEIGHT_TABLES:
        errors.append({"code": "unknown_algorithm_version", "path": "algorithm_version", "message": f"no weight table for '{base_version}'"})

    if min_size < 2:
        errors.append({"code": "invalid_group_size", "path": "min_group_size", "message": "min_group_size must be >= 2"})
    if min_size > max_size:
        errors.append({"code": "invalid_group_size", "path": "min_group_size", "message": "min_group_size must be <= max_group_size"})
    if not (min_size <= target_size <= max_size):
        errors.append({"code": "invalid_group_size", "path": "target_group_size", "message": "target_group_size must lie within [min, max]"})
    for name, value in (("first_pass_min_score", first_pass_min_score), ("second_pass_min_score", second_pass_min_score)):
        if not (0 <= value <= 100):
            errors.append({"code": "invalid_threshold", "path": name, "message": f"{name} must be within [0, 100]"})
    if second_pass_min_score > first_pass_min_score:
        errors.append({"code": "invalid_threshold", "path": "second_pass_min_score", "message": "second pass threshold must not exceed the first"})
    if cooldown_weeks < 0:
        errors.append({"code": "invalid_cooldown", "path": "history_cooldown_weeks", "message": "history_cooldown_weeks must be >= 0"})
    if watchdog_minutes <= 0:
        errors.append({"code": "invalid_watchdog", "path": "run_watchdog_minutes", "message": "run_watchdog_minutes must be > 0"})
    if persist_workers <= 0:
        errors.append({"code": "invalid_workers", "path": "persist_workers", "message": "persist_workers must be > 0"})
    try:
        parse_schedule(schedule)
    except ValueError as exc:
        errors.append({"code": "invalid_schedule", "path": "schedule_day_and_time", "message": str(exc)})
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        errors.append({"code": "invalid_timezone", "path": "match_timezone", "message": f"unknown time zone '{timezone}'"})
    return errors


def validate_matching_settings(**opts: Any) -> None:
    errors = _collect_errors(**opts)
    if errors:
        raise InvalidConfiguration("matching configuration is invalid", errors=errors)


def load_matching_settings(**overrides: Any) -> MatchingSettings:
    """Build and validate settings from config, raising InvalidConfiguration on any error."""
    opts: dict[str, Any] = {
        "base_version": config.ALGORITHM_VERSION,
        "weights_override": config.FACTOR_WEIGHTS_OVERRIDE,
        "min_size": config.MIN_GROUP_SIZE,
        "max_size": config.MAX_GROUP_SIZE,
        "target_size": config.TARGET_GROUP_SIZE,
        "first_pass_min_score": config.FIRST_PASS_MIN_SCORE,
        "second_pass_min_score": config.SECOND_PASS_MIN_SCORE,
        "cooldown_weeks": config.HISTORY_COOLDOWN_WEEKS,
        "schedule": config.SCHEDULE_DAY_AND_TIME,
        "watchdog_minutes": config.RUN_WATCHDOG_MINUTES,
        "persist_workers": config.PERSIST_WORKERS,
        "timezone": config.MATCH_TIMEZONE,
    }
    opts.update(overrides)

    validate_matching_settings(**opts)

    version, weights = resolve_weight_table(opts["base_version"], opts["weights_override"])
    return MatchingSettings(
        algorithm_version=version,
        factor_weights=weights,
        formation=FormationParams(
            min_size=opts["min_size"],
            max_size=opts["max_size"],
            target_size=opts["target_size"],
            first_pass_min_score=opts["first_pass_min_score"],
            second_pass_min_score=opts["second_pass_min_score"],
        ),
        history_cooldown_weeks=opts["cooldown_weeks"],
        schedule=parse_schedule(opts["schedule"]),
        timezone=opts["timezone"],
        watchdog_minutes=opts["watchdog_minutes"],
        persist_workers=opts["persist_workers"],
    )
