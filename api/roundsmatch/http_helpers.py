import uuid
from typing import Any

from fastapi import HTTPException

from .errors import DataUnavailable, InvalidConfiguration, MatchingError, OperatorRequired, RunInProgress, RunNotFound

STATUS_BY_ERROR = {
    RunInProgress: 409,
    OperatorRequired: 400,
    RunNotFound: 404,
    InvalidConfiguration: 500,
    DataUnavailable: 503,
}


def detail(*, message: str, hint: str | None = None, errors: list[dict[str, Any]] | None = None, trace_id: str | None = None) -> dict[str, Any]:
    return {
        "success": False,
        "message": message,
        "hint": hint,
        "errors": errors or [],
        "trace_id": trace_id or str(uuid.uuid4()),
    }


def http_error(exc: MatchingError, trace_id: str | None = None) -> HTTPException:
    status = next((code for cls, code in STATUS_BY_ERROR.items() if isinstance(exc, cls)), 500)
    errors = getattr(exc, "errors", None) or [{"code": exc.code, "message": exc.message, **exc.details}]
    return HTTPException(status_code=status, detail=detail(message=exc.message, hint=exc.code, errors=errors, trace_id=trace_id))


def parse_run_id(raw: str) -> str:
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        raise HTTPException(status_code=404, detail=detail(message="Run not found", hint="run_id must be a UUID"))
