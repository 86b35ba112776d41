from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from roundsmatch.errors import DataUnavailable
from roundsmatch.services.eligibility import SqlCandidateSource, fetch_eligibility_counts, fetch_eligible_candidates

from fakes import FakeDB, uid

WEEK = date(2026, 3, 9)


def test_fetch_eligible_candidates_filters_in_sql_and_skips_malformed_ids():
    db = FakeDB(
        rows=[
            {"user_id": uid(1), "first_name": "Ana", "specialties": ["Cardiology"], "city": "NY"},
            {"user_id": "not-a-uuid", "first_name": "Bad"},
            {"user_id": uid(2), "first_name": "Ben", "specialty": "Oncology", "social_energy_level": "low_key_intimate"},
        ]
    )
    candidates = fetch_eligible_candidates(db, WEEK)

    assert [c.user_id for c in candidates] == [uid(1), uid(2)]
    assert candidates[1].specialties == frozenset({"oncology"})
    sql, params = db.calls[0]
    assert "p.is_verified = TRUE" in sql
    assert "COALESCE(p.is_banned, FALSE) = FALSE" in sql
    assert "p.onboarding_completed = TRUE" in sql
    assert "NOT EXISTS" in sql
    assert "ORDER BY p.id" in sql
    assert params == {"week_start_date": WEEK}


def test_fetch_eligibility_counts_defaults_to_zero():
    counts = fetch_eligibility_counts(FakeDB(first={"total_profiles": 5, "verified": 4}), WEEK)
    assert counts == {"total_profiles": 5, "verified": 4, "banned": 0, "onboarded": 0, "already_placed": 0}


def test_candidate_source_wraps_database_errors():
    def broken_session():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    source = SqlCandidateSource(broken_session)
    with pytest.raises(DataUnavailable):
        source(WEEK)
    with pytest.raises(DataUnavailable):
        source.counts(WEEK)
