"""
Reward redemption and purchase.

use_reward() is what the app calls when a user spends an owned item on today:

    skip_day        today's record becomes 'skipped'
    goal_reduction  today's record gets an effective target of
                    floor(goal target * GOAL_REDUCTION_FACTOR), goal's unit
    streak_saver    passive, only the settlement consumes it

The inventory decrement and the effect are flushed in the same transaction.
If the effect cannot be applied the caller rolls back and nothing is consumed.
"""

import logging
import math
from datetime import date
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import ConflictError, GamificationError
from models import DailyProgress, ProgressStatus, RewardType
from services import coin_ledger, daily_progress, goals, reward_inventory
from services.settlement_calendar import local_today

logger = logging.getLogger(__name__)


class RewardNotUsableError(GamificationError):
    error_code = "REWARD_NOT_USABLE"


def reward_costs() -> Dict[str, int]:
    return {
        RewardType.SKIP_DAY.value: settings.REWARD_COST_SKIP_DAY,
        RewardType.GOAL_REDUCTION.value: settings.REWARD_COST_GOAL_REDUCTION,
        RewardType.STREAK_SAVER.value: settings.REWARD_COST_STREAK_SAVER,
    }


def _parse_kind(kind) -> RewardType:
    try:
        return RewardType(kind)
    except ValueError:
        raise RewardNotUsableError(f"Unknown reward type: {kind}")


def reduced_target(target_value: float) -> int:
    return max(0, math.floor(target_value * settings.GOAL_REDUCTION_FACTOR))


def use_reward(db: Session, user_id: UUID, kind, today: Optional[date] = None) -> DailyProgress:
    """Spend one owned reward on `today` (reference zone). Caller commits."""
    reward = _parse_kind(kind)
    if reward == RewardType.STREAK_SAVER:
        raise RewardNotUsableError("Streak savers are applied automatically when a day is missed")

    day = today or local_today()
    coin_ledger.lock_profile(db, user_id)
    goal = goals.get_active_goal(db, user_id)
    if reward == RewardType.GOAL_REDUCTION and goal is None:
        raise RewardNotUsableError("No active goal to reduce")

    record = daily_progress.get_or_create(db, user_id, day, goal_id=goal.id if goal else None)
    if record.settled_at is not None:
        raise ConflictError(f"{day} is already settled")
    if record.status == ProgressStatus.SKIPPED.value:
        raise ConflictError(f"{day} is already skipped")
    if reward == RewardType.GOAL_REDUCTION and record.effective_target_value is not None:
        raise ConflictError(f"Goal for {day} is already reduced")

    reward_inventory.require_one(db, user_id, reward)

    if reward == RewardType.SKIP_DAY:
        record.status = ProgressStatus.SKIPPED.value
    else:
        record.effective_target_value = reduced_target(goal.target_value)
        record.effective_target_unit = goal.target_unit
    if record.goal_id is None and goal is not None:
        record.goal_id = goal.id
    db.flush()

    logger.info(f"User {user_id} used '{reward.value}' on {day}")
    return record


def purchase_reward(db: Session, user_id: UUID, kind) -> Dict:
    """Pay for one unit of `kind` and add it to the inventory. Caller commits."""
    reward = _parse_kind(kind)
    cost = reward_costs()[reward.value]

    spent = coin_ledger.redeem(db, user_id, cost, f"Purchased {reward.value}")
    quantity = reward_inventory.grant(db, user_id, reward, 1)

    logger.info(f"User {user_id} bought '{reward.value}' for {cost} coins")
    return {
        "reward_type": reward.value,
        "cost": cost,
        "quantity": quantity,
        "coin_balance": spent.balance,
    }
