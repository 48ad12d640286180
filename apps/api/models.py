import enum
import uuid

from sqlalchemy import Column, Integer, Float, CheckConstraint, Date, DateTime, ForeignKey, Text, Index, UniqueConstraint, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class GoalType(str, enum.Enum):
    STEPS = "steps"
    RUN_DISTANCE_KM = "run_distance_km"


class ProgressStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"
    SKIPPED = "skipped"
    FAILED_STREAK_SAVED = "failed_streak_saved"


class RewardType(str, enum.Enum):
    SKIP_DAY = "skip_day"
    GOAL_REDUCTION = "goal_reduction"
    STREAK_SAVER = "streak_saver"  # passive: only consumed by settlement


class TransactionType(str, enum.Enum):
    GOAL_REWARD = "goal_completion_reward"
    STREAK_BONUS = "streak_bonus"
    REWARD_REDEMPTION = "reward_redemption"
    MANUAL = "manual"


class UserProfile(Base):
    """
    Per-user gamification state.

    coin_balance is a cache of SUM(coin_transaction.coin_change); only the coin
    ledger service writes it. active_goal_id is the single owned "current goal"
    slot, so two goals can never be active at once.
    """
    __tablename__ = "user_profile"

    user_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(Text, nullable=True)
    coin_balance = Column(Integer, default=0, nullable=False)
    current_streak_length = Column(Integer, default=0, nullable=False)
    longest_streak_length = Column(Integer, default=0, nullable=False)
    active_goal_id = Column(
        Uuid,
        ForeignKey("goal.id", ondelete="SET NULL", use_alter=True, name="fk_user_profile_active_goal"),
        nullable=True,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("coin_balance >= 0", name="ck_user_profile_coin_balance_non_negative"),
        CheckConstraint("current_streak_length >= 0", name="ck_user_profile_streak_non_negative"),
    )


class Goal(Base):
    """
    A numeric daily target. Goals are never deleted when replaced; the old row
    gets deactivated_at stamped and the profile points at the new one.
    """
    __tablename__ = "goal"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("user_profile.user_id", ondelete="CASCADE"), nullable=False)
    goal_type = Column(Text, nullable=False)  # GoalType value
    target_value = Column(Float, nullable=False)
    target_unit = Column(Text, nullable=False)  # 'steps' | 'km'
    apps_to_block = Column(JSONType, nullable=False, default=list)  # app bundle identifiers
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("target_value > 0", name="ck_goal_target_value_positive"),
        Index("ix_goal_user_id", "user_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.deactivated_at is None


class DailyProgress(Base):
    """
    One row per (user, date).

    progress_data is written by the activity sync; status/effective target by
    reward redemption; status and settled_at by the daily settlement, once.
    """
    __tablename__ = "daily_progress"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("user_profile.user_id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    goal_id = Column(Uuid, ForeignKey("goal.id", ondelete="SET NULL"), nullable=True)
    # e.g. {"steps_count": 12000, "distance_ran_km": 5.2}
    progress_data = Column(JSONType, nullable=True)
    status = Column(Text, default=ProgressStatus.PENDING.value, nullable=False)
    effective_target_value = Column(Float, nullable=True)
    effective_target_unit = Column(Text, nullable=True)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_daily_progress_user_date"),
        Index("ix_daily_progress_date", "date"),
    )


class UserOwnedReward(Base):
    """Inventory: one row per (user, reward_type). Rows are left at zero when used up."""
    __tablename__ = "user_owned_reward"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("user_profile.user_id", ondelete="CASCADE"), nullable=False)
    reward_type = Column(Text, nullable=False)  # RewardType value
    quantity = Column(Integer, default=0, nullable=False)
    acquired_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "reward_type", name="uq_user_owned_reward_user_type"),
        CheckConstraint("quantity >= 0", name="ck_user_owned_reward_quantity_non_negative"),
    )


class CoinTransaction(Base):
    """Append-only coin ledger."""
    __tablename__ = "coin_transaction"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("user_profile.user_id", ondelete="CASCADE"), nullable=False)
    coin_change = Column(Integer, nullable=False)
    type = Column(Text, nullable=False)  # TransactionType value
    related_goal_id = Column(Uuid, ForeignKey("goal.id", ondelete="SET NULL"), nullable=True)
    description = Column(Text, nullable=True)
    # e.g. "goal:2026-01-14" - makes settlement awards at-most-once
    idempotency_key = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "idempotency_key", name="uq_coin_transaction_user_idempotency_key"),
        Index("ix_coin_transaction_user_created", "user_id", "created_at"),
    )


class StreakSaverApplied(Base):
    """Audit + guard: a streak saver is applied at most once per (user, date)."""
    __tablename__ = "streak_saver_applied"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("user_profile.user_id", ondelete="CASCADE"), nullable=False)
    date_saved = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "date_saved", name="uq_streak_saver_applied_user_date"),
    )


class SettlementFailure(Base):
    """A user whose settlement exhausted its retries; replayed by the next run or by hand."""
    __tablename__ = "settlement_failure"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False)
    settlement_date = Column(Date, nullable=False)
    stage = Column(Text, nullable=False)
    error = Column(Text, nullable=False)
    attempts = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_settlement_failure_user_date", "user_id", "settlement_date"),
    )
