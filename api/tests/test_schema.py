from pathlib import Path

from roundsmatch.database import Base
from roundsmatch import models  # noqa: F401  registers tables on Base.metadata

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


def _migration_sql() -> str:
    return "\n".join(p.read_text(encoding="utf-8") for p in sorted(MIGRATIONS_DIR.glob("*.sql")))


def test_every_model_table_is_created_by_a_migration():
    sql = _migration_sql()
    for table in Base.metadata.tables:
        assert f"CREATE TABLE IF NOT EXISTS {table} (" in sql, table


def test_weekly_guards_are_partial_unique_indexes():
    sql = _migration_sql()
    assert "uq_match_batches_week_scheduled" in sql
    assert "WHERE forced = false AND status <> 'failed'" in sql
    assert "uq_match_batches_week_running" in sql
    assert "uq_match_members_week_user" in sql

    batches = Base.metadata.tables["match_batches"]
    unique_indexes = {ix.name for ix in batches.indexes if ix.unique}
    assert unique_indexes == {"uq_match_batches_week_scheduled", "uq_match_batches_week_running"}


def test_every_profile_column_read_by_matching_is_migrated():
    sql = _migration_sql()
    for column in Base.metadata.tables["profiles"].columns:
        assert column.name in sql, column.name
    assert "ADD COLUMN IF NOT EXISTS sports_activities jsonb" in sql
