"""
Daily progress records

One row per (user, date). Three writers touch it, each owning different fields:

    activity sync       progress_data, last_synced_at     (record_measurements)
    reward redemption   status='skipped', effective target (reward_redemption)
    daily settlement    status, goal_id, settled_at        (daily_settlement)

settled_at marks a day as final. Once set, neither the settlement nor a
redemption may change the status again.
"""

import logging
from datetime import date, datetime, timezone
from numbers import Number
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models import DailyProgress, Goal, ProgressStatus
from services import goals
from services.goal_evaluator import STATUS_TO_OUTCOME, SettlementOutcome
from services.settlement_calendar import existed_by_end_of

logger = logging.getLogger(__name__)


def get_record(db: Session, user_id: UUID, day: date, lock: bool = False) -> Optional[DailyProgress]:
    query = db.query(DailyProgress).filter(DailyProgress.user_id == user_id, DailyProgress.date == day)
    if lock:
        query = query.with_for_update().populate_existing()
    return query.first()


def get_or_create(db: Session, user_id: UUID, day: date, goal_id: Optional[UUID] = None) -> DailyProgress:
    """Locked record for (user, day), created as 'pending' when absent."""
    record = get_record(db, user_id, day, lock=True)
    if record is not None:
        return record
    record = DailyProgress(
        user_id=user_id,
        date=day,
        goal_id=goal_id,
        progress_data={},
        status=ProgressStatus.PENDING.value,
    )
    db.add(record)
    db.flush()
    return record


def record_measurements(db: Session, user_id: UUID, day: date, measurements: Dict[str, float]) -> DailyProgress:
    """
    Merge synced measurements (e.g. {"steps_count": 8421}) into the day's record.

    Later syncs overwrite earlier values per metric. Status is never touched.
    """
    cleaned = {}
    for key, value in measurements.items():
        if isinstance(value, bool) or not isinstance(value, Number):
            raise ValueError(f"Measurement '{key}' must be numeric, got {value!r}")
        cleaned[key] = value

    goal = goal_for_day(db, user_id, day)
    record = get_or_create(db, user_id, day, goal_id=goal.id if goal else None)
    # Reassign so the JSON column is marked dirty.
    record.progress_data = {**(record.progress_data or {}), **cleaned}
    record.last_synced_at = datetime.now(timezone.utc)
    if record.goal_id is None and goal is not None and record.settled_at is None:
        record.goal_id = goal.id
    db.flush()
    logger.debug(f"Synced {sorted(cleaned)} for user {user_id} on {day}")
    return record


def goal_for_day(db: Session, user_id: UUID, day: date, record: Optional[DailyProgress] = None) -> Optional[Goal]:
    """
    The goal `day` is judged against.

    A record tracked against a goal keeps that goal, even if the user has since
    replaced it; a record pointing at a goal that no longer exists is judged as
    no goal at all. Otherwise the active goal counts only if it was set before
    the day ended in the reference zone.
    """
    if record is not None and record.goal_id is not None:
        goal = db.get(Goal, record.goal_id)
        if goal is None:
            logger.warning(
                f"Daily progress {record.id} for user {user_id} references missing goal "
                f"{record.goal_id}; treating {day} as no active goal"
            )
        return goal

    goal = goals.get_active_goal(db, user_id)
    if goal is not None and goal.created_at is not None and not existed_by_end_of(goal.created_at, day):
        logger.info(f"Goal {goal.id} for user {user_id} was set after {day} ended; treating the day as no active goal")
        return None
    return goal


def outcome_of(record: Optional[DailyProgress]) -> Optional[SettlementOutcome]:
    """Final outcome stored on a settled record, or None if the day is still open."""
    if record is None:
        return None
    if record.settled_at is None:
        # A redeemed skip is final as soon as it is written.
        if record.status == ProgressStatus.SKIPPED.value:
            return SettlementOutcome.SKIPPED
        return None
    if record.status == ProgressStatus.PENDING.value:
        # Settled without an active goal.
        return SettlementOutcome.NO_ACTIVE_GOAL
    return STATUS_TO_OUTCOME[record.status]


def settlement_status(db: Session, user_id: UUID, day: date) -> str:
    """
    What the app-blocking side should act on for `day`:
    met / missed / skipped / missed_but_streak_saved / no_active_goal / pending.
    """
    record = get_record(db, user_id, day)
    outcome = outcome_of(record)
    if outcome is not None:
        return outcome.value
    if goal_for_day(db, user_id, day, record) is None:
        return SettlementOutcome.NO_ACTIVE_GOAL.value
    return ProgressStatus.PENDING.value
