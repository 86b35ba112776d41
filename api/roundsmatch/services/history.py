from __future__ import annotations

import logging
import threading
import uuid
from datetime import date, timedelta
from typing import Iterable, Protocol

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import DataUnavailable
from .scoring import canonical_pair

logger = logging.getLogger(__name__)


def cooldown_since(week_start_date: date, cooldown_weeks: int) -> date:
    return week_start_date - timedelta(days=7 * cooldown_weeks)


def member_pairs(members: Iterable[str]) -> list[tuple[str, str]]:
    members = list(members)
    return [canonical_pair(members[i], members[j]) for i in range(len(members)) for j in range(i + 1, len(members))]


class HistoryStore(Protocol):
    def load_recent_pairs(self, week_start_date: date, cooldown_weeks: int) -> set[tuple[str, str]]: ...

    def append_pairs(
        self,
        pairs: list[tuple[str, str]],
        *,
        batch_id: str,
        match_id: str,
        week_start_date: date,
    ) -> int: ...


class SqlHistoryStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def load_recent_pairs(self, week_start_date: date, cooldown_weeks: int) -> set[tuple[str, str]]:
        since = cooldown_since(week_start_date, cooldown_weeks)
        try:
            with self.session_factory() as db:
                rows = db.execute(
                    text(
                        """
                        SELECT user_a_id, user_b_id
                        FROM match_history
                        WHERE week_start_date >= :since
                          AND week_start_date <= :week_start_date
                        """
                    ),
                    {"since": since, "week_start_date": week_start_date},
                ).mappings().all()
        except SQLAlchemyError as exc:
            raise DataUnavailable("match history unavailable") from exc
        return {canonical_pair(str(r["user_a_id"]), str(r["user_b_id"])) for r in rows}

    def append_pairs(
        self,
        pairs: list[tuple[str, str]],
        *,
        batch_id: str,
        match_id: str,
        week_start_date: date,
    ) -> int:
        with self.session_factory() as db:
            for a, b in pairs:
                db.execute(
                    text(
                        """
                        INSERT INTO match_history (id, user_a_id, user_b_id, batch_id, match_id, week_start_date)
                        VALUES (CAST(:id AS uuid), CAST(:a AS uuid), CAST(:b AS uuid), CAST(NULLIF(:batch_id, '') AS uuid), CAST(:match_id AS uuid), :week_start_date)
                        ON CONFLICT (user_a_id, user_b_id, match_id)
                        DO NOTHING
                        """
                    ),
                    {
                        "id": str(uuid.uuid4()),
                        "a": a,
                        "b": b,
                        "batch_id": batch_id,
                        "match_id": match_id,
                        "week_start_date": week_start_date,
                    },
                )
            db.commit()
        return len(pairs)


class HistoryTracker:
    """Read-side exclusion set for one run plus the single writer of history rows."""

    def __init__(self, store: HistoryStore, week_start_date: date, cooldown_weeks: int):
        self.store = store
        self.week_start_date = week_start_date
        self.cooldown_weeks = cooldown_weeks
        self._recent: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    def load(self) -> "HistoryTracker":
        self._recent = set(self.store.load_recent_pairs(self.week_start_date, self.cooldown_weeks))
        logger.info("[MATCHING] history loaded week=%s cooldown_weeks=%s pairs=%s", self.week_start_date, self.cooldown_weeks, len(self._recent))
        return self

    @property
    def recent_pairs(self) -> set[tuple[str, str]]:
        return set(self._recent)

    def was_recently_grouped(self, user_a: str, user_b: str) -> bool:
        return canonical_pair(user_a, user_b) in self._recent

    def record(self, members: Iterable[str], batch_id: str, match_id: str) -> int:
        # Only called after the group itself has been persisted.
        pairs = member_pairs(members)
        written = self.store.append_pairs(pairs, batch_id=batch_id, match_id=match_id, week_start_date=self.week_start_date)
        with self._lock:
            self._recent.update(pairs)
        return written
