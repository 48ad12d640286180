"""
Goals and profiles

A user has at most one active goal: user_profile.active_goal_id. Setting a
new goal stamps deactivated_at on the old row and repoints the profile in the
same transaction, while the profile row is locked.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.exceptions import GamificationError
from models import Goal, GoalType, UserProfile
from services.coin_ledger import lock_profile
from services.goal_evaluator import GOAL_UNITS

logger = logging.getLogger(__name__)


class InvalidGoalError(GamificationError):
    error_code = "INVALID_GOAL"


def create_profile(db: Session, user_id: Optional[UUID] = None, username: Optional[str] = None) -> UserProfile:
    """Signup hook: zero balance, zero streak, no goal."""
    profile = UserProfile(username=username, coin_balance=0, current_streak_length=0, longest_streak_length=0)
    if user_id is not None:
        profile.user_id = user_id
    db.add(profile)
    db.flush()
    return profile


def get_active_goal(db: Session, user_id: UUID) -> Optional[Goal]:
    """
    The user's active goal, or None.

    A dangling active_goal_id (goal row gone) reads as no goal.
    """
    profile = db.get(UserProfile, user_id)
    if profile is None or profile.active_goal_id is None:
        return None
    goal = db.get(Goal, profile.active_goal_id)
    if goal is None:
        logger.warning(f"User {user_id} points at missing goal {profile.active_goal_id}; treating as no goal")
        return None
    if not goal.is_active:
        logger.warning(f"User {user_id} points at deactivated goal {goal.id}; treating as no goal")
        return None
    return goal


def set_active_goal(
    db: Session,
    user_id: UUID,
    goal_type,
    target_value: float,
    target_unit: Optional[str] = None,
    apps_to_block: Optional[Iterable[str]] = None,
) -> Goal:
    """Create a goal and make it the only active one. Caller commits."""
    try:
        goal_type_value = GoalType(goal_type).value
    except ValueError:
        raise InvalidGoalError(f"Unknown goal type: {goal_type}")

    if target_value is None or float(target_value) <= 0:
        raise InvalidGoalError(f"Goal target must be positive, got {target_value}")

    expected_unit = GOAL_UNITS[goal_type_value]
    if target_unit is not None and target_unit != expected_unit:
        raise InvalidGoalError(
            f"Goal type '{goal_type_value}' is measured in '{expected_unit}', not '{target_unit}'"
        )

    profile = lock_profile(db, user_id)

    if profile.active_goal_id is not None:
        previous = db.get(Goal, profile.active_goal_id)
        if previous is not None and previous.is_active:
            previous.deactivated_at = datetime.now(timezone.utc)

    goal = Goal(
        user_id=user_id,
        goal_type=goal_type_value,
        target_value=float(target_value),
        target_unit=expected_unit,
        apps_to_block=list(apps_to_block or []),
    )
    db.add(goal)
    db.flush()

    profile.active_goal_id = goal.id
    db.flush()

    logger.info(f"User {user_id} set goal {goal.id}: {goal_type_value} >= {goal.target_value} {expected_unit}")
    return goal


def clear_active_goal(db: Session, user_id: UUID) -> None:
    profile = lock_profile(db, user_id)
    if profile.active_goal_id is None:
        return
    goal = db.get(Goal, profile.active_goal_id)
    if goal is not None and goal.is_active:
        goal.deactivated_at = datetime.now(timezone.utc)
    profile.active_goal_id = None
    db.flush()

