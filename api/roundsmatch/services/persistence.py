from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

from sqlalchemy import text

from .candidates import Candidate
from .events import log_match_event
from .explanations import build_welcome_message, describe_compatibility
from .formation import FormedGroup
from .scoring import canonical_pair, compute_compatibility

logger = logging.getLogger(__name__)

GROUP_ID_NAMESPACE = uuid.UUID("6f1d3a52-8c1e-4b5e-9a57-2f0f7c1d9e44")
DIRECT_MATCH_VERSION = "direct-v1"


def deterministic_group_id(batch_id: str, member_ids) -> str:
    """Same batch and same members always yield the same id, so a retried write is a no-op."""
    return str(uuid.uuid5(GROUP_ID_NAMESPACE, f"{batch_id}:{','.join(sorted(member_ids))}"))


def group_name_for_week(week_start_date: date) -> str:
    return f"Week of {week_start_date.isoformat()}"


@dataclass(frozen=True)
class GroupRecord:
    group_id: str
    batch_id: str
    week_start_date: date
    member_ids: tuple[str, ...]
    average_compatibility: int
    algorithm_version: str
    pair_scores: tuple[tuple[str, str, int], ...]
    group_name: str
    welcome_message: str

    def output(self) -> dict[str, Any]:
        return {
            "groupId": self.group_id,
            "memberIds": list(self.member_ids),
            "averageCompatibility": self.average_compatibility,
            "batchId": self.batch_id,
        }


def build_group_record(
    *,
    batch_id: str,
    week_start_date: date,
    group: FormedGroup,
    candidates_by_id: dict[str, Candidate],
    algorithm_version: str,
) -> GroupRecord:
    members = [candidates_by_id[uid] for uid in group.members if uid in candidates_by_id]
    return GroupRecord(
        group_id=deterministic_group_id(batch_id, group.members),
        batch_id=batch_id,
        week_start_date=week_start_date,
        member_ids=tuple(group.members),
        average_compatibility=group.average_score,
        algorithm_version=algorithm_version,
        pair_scores=group.pair_scores,
        group_name=group_name_for_week(week_start_date),
        welcome_message=build_welcome_message(members),
    )


class GroupSink(Protocol):
    def save_group(self, record: GroupRecord) -> str: ...


class SqlGroupSink:
    """Writes one group, its memberships, chat channel and outbox rows in a single transaction."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def save_group(self, record: GroupRecord) -> str:
        with self.session_factory() as db:
            db.execute(
                text(
                    """
                    INSERT INTO matches (
                      id, batch_id, week_start_date, group_name, average_compatibility,
                      algorithm_version, member_count, pairwise_scores, created_at
                    )
                    VALUES (
                      CAST(:id AS uuid), CAST(NULLIF(:batch_id, '') AS uuid), :week_start_date, :group_name, :average_compatibility,
                      :algorithm_version, :member_count, CAST(:pairwise_scores AS jsonb), NOW()
                    )
                    ON CONFLICT (id) DO NOTHING
                    """
                ),
                {
                    "id": record.group_id,
                    "batch_id": record.batch_id,
                    "week_start_date": record.week_start_date,
                    "group_name": record.group_name,
                    "average_compatibility": record.average_compatibility,
                    "algorithm_version": record.algorithm_version,
                    "member_count": len(record.member_ids),
                    "pairwise_scores": json.dumps([{"user_a": a, "user_b": b, "score": s} for a, b, s in record.pair_scores]),
                },
            )
            for user_id in record.member_ids:
                db.execute(
                    text(
                        """
                        INSERT INTO match_members (match_id, batch_id, user_id, week_start_date)
                        VALUES (CAST(:match_id AS uuid), CAST(NULLIF(:batch_id, '') AS uuid), CAST(:user_id AS uuid), :week_start_date)
                        ON CONFLICT (match_id, user_id) DO NOTHING
                        """
                    ),
                    {"match_id": record.group_id, "batch_id": record.batch_id, "user_id": user_id, "week_start_date": record.week_start_date},
                )
            db.execute(
                text(
                    """
                    INSERT INTO chat_channels (id, match_id, welcome_message, created_at)
                    VALUES (CAST(:id AS uuid), CAST(:match_id AS uuid), :welcome_message, NOW())
                    ON CONFLICT (match_id) DO NOTHING
                    """
                ),
                {"id": str(uuid.uuid4()), "match_id": record.group_id, "welcome_message": record.welcome_message},
            )
            payload = {**record.output(), "groupName": record.group_name, **describe_compatibility(record.average_compatibility)}
            for user_id in record.member_ids:
                db.execute(
                    text(
                        """
                        INSERT INTO notification_outbox (id, user_id, template, payload, status, idempotency_key, created_at)
                        VALUES (CAST(:id AS uuid), CAST(:user_id AS uuid), 'group_ready', CAST(:payload AS jsonb), 'pending', :idempotency_key, NOW())
                        ON CONFLICT (idempotency_key) DO NOTHING
                        """
                    ),
                    {
                        "id": str(uuid.uuid4()),
                        "user_id": user_id,
                        "payload": json.dumps(payload),
                        "idempotency_key": f"group_ready:{record.group_id}:{user_id}",
                    },
                )
                log_match_event(
                    db,
                    user_id,
                    record.week_start_date,
                    "placed",
                    {"match_id": record.group_id, "group_size": len(record.member_ids)},
                    batch_id=record.batch_id,
                )
            db.commit()
        logger.info("[PERSIST] group saved id=%s size=%s batch=%s", record.group_id, len(record.member_ids), record.batch_id)
        return record.group_id


def create_direct_match(
    a: Candidate,
    b: Candidate,
    *,
    week_start_date: date,
    sink: GroupSink,
    history,
    weights: dict[str, float] | None = None,
) -> GroupRecord:
    """Ad-hoc two-person match (like/message flow); bypasses group formation."""
    if a.user_id == b.user_id:
        raise ValueError("direct match needs two different users")
    edge = compute_compatibility(a, b, weights)
    if edge.exclusion:
        raise ValueError(f"direct match refused: pair is excluded ({edge.exclusion})")
    user_a, user_b = canonical_pair(a.user_id, b.user_id)
    members = (user_a, user_b)
    record = GroupRecord(
        group_id=deterministic_group_id(f"direct:{week_start_date.isoformat()}", members),
        batch_id="",
        week_start_date=week_start_date,
        member_ids=members,
        average_compatibility=edge.score,
        algorithm_version=DIRECT_MATCH_VERSION,
        pair_scores=((user_a, user_b, edge.score),),
        group_name=f"{a.first_name or 'Match'} & {b.first_name or 'Match'}",
        welcome_message=build_welcome_message([a, b]),
    )
    sink.save_group(record)
    history.record(members, batch_id="", match_id=record.group_id)
    return record
