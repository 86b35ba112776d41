import uuid
from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from .database import Base


class Profile(Base):
    """Read-only here; owned by the profile product."""

    __tablename__ = "profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String, nullable=True)
    specialties = Column(JSONB, nullable=True)
    specialty = Column(String, nullable=True)
    city = Column(String, nullable=True)
    age = Column(Integer, nullable=True)
    gender = Column(String, nullable=True)
    career_stage = Column(String, nullable=True)
    activity_level = Column(String, nullable=True)
    social_energy_level = Column(String, nullable=True)
    conversation_style = Column(String, nullable=True)
    life_stage = Column(String, nullable=True)
    interests = Column(JSONB, nullable=True)
    availability_slots = Column(JSONB, nullable=True)
    meeting_frequency = Column(String, nullable=True)
    ideal_weekend = Column(String, nullable=True)
    sports_activities = Column(JSONB, nullable=True)
    gender_preference = Column(String, nullable=True)
    specialty_preference = Column(String, nullable=True)
    is_verified = Column(Boolean, nullable=False, server_default=text("false"))
    is_banned = Column(Boolean, nullable=False, server_default=text("false"))
    onboarding_completed = Column(Boolean, nullable=False, server_default=text("false"))


class MatchBatch(Base):
    __tablename__ = "match_batches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    week_start_date = Column(Date, nullable=False)
    algorithm_version = Column(String, nullable=False)
    trigger = Column(String, nullable=False)
    forced = Column(Boolean, nullable=False, server_default=text("false"))
    operator_id = Column(String, nullable=True)
    status = Column(String, nullable=False)
    eligible_count = Column(Integer, nullable=False, server_default=text("0"))
    groups_formed = Column(Integer, nullable=False, server_default=text("0"))
    users_placed = Column(Integer, nullable=False, server_default=text("0"))
    users_unplaced = Column(Integer, nullable=False, server_default=text("0"))
    duration_ms = Column(Integer, nullable=True)
    report = Column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    error_code = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    heartbeat_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "uq_match_batches_week_scheduled",
            "week_start_date",
            unique=True,
            postgresql_where=text("forced = false AND status <> 'failed'"),
        ),
        Index("uq_match_batches_week_running", "week_start_date", unique=True, postgresql_where=text("status = 'running'")),
        Index("idx_match_batches_status_heartbeat", "status", "heartbeat_at"),
    )


class Match(Base):
    __tablename__ = "matches"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    batch_id = Column(UUID(as_uuid=True), ForeignKey("match_batches.id"), nullable=True)
    week_start_date = Column(Date, nullable=False)
    group_name = Column(String, nullable=False)
    average_compatibility = Column(Integer, nullable=False)
    algorithm_version = Column(String, nullable=False)
    member_count = Column(Integer, nullable=False)
    pairwise_scores = Column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("idx_matches_batch_id", "batch_id"),)


class MatchMember(Base):
    __tablename__ = "match_members"

    match_id = Column(UUID(as_uuid=True), ForeignKey("matches.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(UUID(as_uuid=True), primary_key=True)
    batch_id = Column(UUID(as_uuid=True), nullable=True)
    week_start_date = Column(Date, nullable=False)

    __table_args__ = (
        Index(
            "uq_match_members_week_user",
            "week_start_date",
            "user_id",
            unique=True,
            postgresql_where=text("batch_id IS NOT NULL"),
        ),
    )


class MatchHistory(Base):
    __tablename__ = "match_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_a_id = Column(UUID(as_uuid=True), nullable=False)
    user_b_id = Column(UUID(as_uuid=True), nullable=False)
    batch_id = Column(UUID(as_uuid=True), nullable=True)
    match_id = Column(UUID(as_uuid=True), nullable=False)
    week_start_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_a_id", "user_b_id", "match_id", name="uq_match_history_pair_match"),
        Index("idx_match_history_week", "week_start_date"),
    )


class ChatChannel(Base):
    __tablename__ = "chat_channels"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    match_id = Column(UUID(as_uuid=True), ForeignKey("matches.id", ondelete="CASCADE"), nullable=False, unique=True)
    welcome_message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class NotificationOutbox(Base):
    __tablename__ = "notification_outbox"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    template = Column(String, nullable=False)
    payload = Column(JSONB, nullable=False)
    status = Column(String, nullable=False, server_default=text("'pending'"))
    idempotency_key = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MatchEvent(Base):
    __tablename__ = "match_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=True)
    batch_id = Column(UUID(as_uuid=True), nullable=True)
    week_start_date = Column(Date, nullable=False)
    event_type = Column(String, nullable=False)
    operator_id = Column(String, nullable=True)
    payload = Column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (Index("idx_match_events_week_type", "week_start_date", "event_type"),)
