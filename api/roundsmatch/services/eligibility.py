from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..errors import DataUnavailable
from .candidates import Candidate, candidate_from_row

logger = logging.getLogger(__name__)


def fetch_eligible_candidates(db, week_start_date: date) -> list[Candidate]:
    rows = db.execute(
        text(
            """
            SELECT
              p.id AS user_id,
              p.first_name,
              p.specialties,
              p.specialty,
              p.city,
              p.age,
              p.gender,
              p.career_stage,
              p.activity_level,
              p.social_energy_level,
              p.conversation_style,
              p.life_stage,
              p.interests,
              p.availability_slots,
              p.meeting_frequency,
              p.ideal_weekend,
              p.sports_activities,
              p.gender_preference,
              p.specialty_preference
            FROM profiles p
            WHERE p.is_verified = TRUE
              AND COALESCE(p.is_banned, FALSE) = FALSE
              AND p.onboarding_completed = TRUE
              AND NOT EXISTS (
                SELECT 1
                FROM match_members mm
                WHERE mm.user_id = p.id
                  AND mm.week_start_date = :week_start_date
                  AND mm.batch_id IS NOT NULL
              )
            ORDER BY p.id
            """
        ),
        {"week_start_date": week_start_date},
    ).mappings().all()

    eligible: list[Candidate] = []
    for row in rows:
        raw_user_id = str(row["user_id"])
        try:
            uid = str(uuid.UUID(raw_user_id))
        except ValueError:
            logger.warning("[MATCHING] skipping profile with malformed id=%s", raw_user_id)
            continue
        eligible.append(candidate_from_row({**dict(row), "user_id": uid}))
    return eligible


def fetch_eligibility_counts(db, week_start_date: date) -> dict[str, int]:
    row = db.execute(
        text(
            """
            SELECT
              COUNT(1) AS total_profiles,
              SUM(CASE WHEN p.is_verified THEN 1 ELSE 0 END) AS verified,
              SUM(CASE WHEN COALESCE(p.is_banned, FALSE) THEN 1 ELSE 0 END) AS banned,
              SUM(CASE WHEN p.onboarding_completed THEN 1 ELSE 0 END) AS onboarded,
              SUM(
                CASE WHEN EXISTS (
                  SELECT 1 FROM match_members mm
                  WHERE mm.user_id = p.id AND mm.week_start_date = :week_start_date AND mm.batch_id IS NOT NULL
                ) THEN 1 ELSE 0 END
              ) AS already_placed
            FROM profiles p
            """
        ),
        {"week_start_date": week_start_date},
    ).mappings().first() or {}

    return {
        "total_profiles": int(row.get("total_profiles") or 0),
        "verified": int(row.get("verified") or 0),
        "banned": int(row.get("banned") or 0),
        "onboarded": int(row.get("onboarded") or 0),
        "already_placed": int(row.get("already_placed") or 0),
    }


class SqlCandidateSource:
    """All-or-nothing read of the eligible pool for one week."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def __call__(self, week_start_date: date) -> list[Candidate]:
        try:
            with self.session_factory() as db:
                return fetch_eligible_candidates(db, week_start_date)
        except SQLAlchemyError as exc:
            raise DataUnavailable("profile store unavailable") from exc

    def counts(self, week_start_date: date) -> dict[str, Any]:
        try:
            with self.session_factory() as db:
                return fetch_eligibility_counts(db, week_start_date)
        except SQLAlchemyError as exc:
            raise DataUnavailable("profile store unavailable") from exc
