import json
import logging
import uuid
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


def log_match_event(
    db,
    user_id: str,
    week_start_date,
    event_type: str,
    payload: dict[str, Any] | None = None,
    batch_id: str | None = None,
) -> None:
    payload = payload or {}
    db.execute(
        text(
            """
            INSERT INTO match_events (id, user_id, batch_id, week_start_date, event_type, payload)
            VALUES (:id, CAST(:user_id AS uuid), CAST(NULLIF(:batch_id, '') AS uuid), :week_start_date, :event_type, CAST(:payload AS jsonb))
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "batch_id": batch_id or "",
            "week_start_date": week_start_date,
            "event_type": event_type,
            "payload": json.dumps(payload),
        },
    )


def log_batch_event(
    db,
    *,
    event_type: str,
    week_start_date,
    batch_id: str | None = None,
    operator_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> None:
    payload = payload or {}
    db.execute(
        text(
            """
            INSERT INTO match_events (id, user_id, batch_id, week_start_date, event_type, operator_id, payload)
            VALUES (
              :id,
              NULL,
              CAST(NULLIF(:batch_id, '') AS uuid),
              :week_start_date,
              :event_type,
              NULLIF(:operator_id, ''),
              CAST(:payload AS jsonb)
            )
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "batch_id": batch_id or "",
            "week_start_date": week_start_date,
            "event_type": event_type,
            "operator_id": operator_id or "",
            "payload": json.dumps(payload),
        },
    )


class SqlEventSink:
    """Audit trail for runs. Writes are best-effort and never change a run's outcome."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def no_match(self, user_ids: list[str], week_start_date, batch_id: str) -> None:
        try:
            with self.session_factory() as db:
                for user_id in user_ids:
                    log_match_event(db, user_id, week_start_date, "no_match", {"reason": "no_compatible_group"}, batch_id=batch_id)
                db.commit()
        except SQLAlchemyError:
            logger.warning("[MATCHING] failed to record no_match events batch=%s users=%s", batch_id, len(user_ids), exc_info=True)

    def batch_event(self, event_type: str, week_start_date, batch_id: str | None, operator_id: str | None, payload: dict[str, Any]) -> None:
        try:
            with self.session_factory() as db:
                log_batch_event(
                    db,
                    event_type=event_type,
                    week_start_date=week_start_date,
                    batch_id=batch_id,
                    operator_id=operator_id,
                    payload=payload,
                )
                db.commit()
        except SQLAlchemyError:
            logger.warning("[BATCH] failed to record %s event batch=%s", event_type, batch_id, exc_info=True)
