"""
Error taxonomy for the weekly matching engine.

Fatal errors (DataUnavailable, InvalidConfiguration, WatchdogTimeout) abort a
run before any group is written. RunInProgress rejects a concurrent trigger.
PartialPersistenceFailure never leaves the orchestrator: it is folded into the
run report of a `partial` batch.
"""

from __future__ import annotations

from typing import Any


class MatchingError(Exception):
    code = "matching_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DataUnavailable(MatchingError):
    code = "data_unavailable"


class InvalidConfiguration(MatchingError):
    code = "invalid_configuration"

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None):
        self.errors = errors or []
        super().__init__(message, details={"errors": self.errors})


class RunInProgress(MatchingError):
    code = "run_in_progress"


class WatchdogTimeout(MatchingError):
    code = "watchdog_timeout"


class OperatorRequired(MatchingError):
    code = "operator_required"


class RunNotFound(MatchingError):
    code = "run_not_found"


class PartialPersistenceFailure(MatchingError):
    code = "partial_persistence_failure"

    def __init__(self, failures: list[dict[str, Any]]):
        self.failures = failures
        super().__init__(f"{len(failures)} group(s) failed to persist", details={"failures": failures})
