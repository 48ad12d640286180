"""
Reward Inventory Store

Per-user counts of reward items (skip_day, goal_reduction, streak_saver).

Consumption contract:
    - consume_one() decrements by exactly one, only if quantity > 0.
    - The decrement is a single conditional UPDATE (compare-and-swap on
      quantity > 0), so two concurrent consumers for the same (user, kind)
      serialize on the row and the loser sees rowcount 0. Quantity can never
      go negative; the CHECK constraint backs this up at the database.
    - Used-up rows stay at zero rather than being deleted.

Nothing here commits. Callers own the transaction so that the decrement and
its effect (streak save, skip, target reduction) land together.
"""

import logging
from typing import Dict, List
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from core.exceptions import InsufficientRewardError
from models import RewardType, UserOwnedReward

logger = logging.getLogger(__name__)


def _kind(kind) -> str:
    return RewardType(kind).value


def available(db: Session, user_id: UUID, kind) -> int:
    """Quantity currently held. 0 when the user never owned this kind."""
    quantity = (
        db.query(UserOwnedReward.quantity)
        .filter(UserOwnedReward.user_id == user_id, UserOwnedReward.reward_type == _kind(kind))
        .scalar()
    )
    return int(quantity or 0)


def consume_one(db: Session, user_id: UUID, kind) -> bool:
    """
    Atomically take one unit. Returns False without touching state when none is held.
    """
    result = db.execute(
        update(UserOwnedReward)
        .where(
            UserOwnedReward.user_id == user_id,
            UserOwnedReward.reward_type == _kind(kind),
            UserOwnedReward.quantity > 0,
        )
        .values(quantity=UserOwnedReward.quantity - 1)
        .execution_options(synchronize_session=False)
    )
    consumed = result.rowcount == 1
    if consumed:
        logger.info(f"Consumed one '{_kind(kind)}' for user {user_id}")
    else:
        logger.debug(f"No '{_kind(kind)}' available to consume for user {user_id}")
    return consumed


def require_one(db: Session, user_id: UUID, kind) -> None:
    """consume_one() for callers that treat an empty inventory as an error."""
    if not consume_one(db, user_id, kind):
        raise InsufficientRewardError(user_id, _kind(kind))


def grant(db: Session, user_id: UUID, kind, quantity: int = 1) -> int:
    """
    Add units to a user's inventory (purchase flow). Returns the new quantity.
    """
    if quantity <= 0:
        raise ValueError(f"grant quantity must be positive, got {quantity}")
    kind_value = _kind(kind)

    row = (
        db.query(UserOwnedReward)
        .filter(UserOwnedReward.user_id == user_id, UserOwnedReward.reward_type == kind_value)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if row is None:
        # A concurrent first grant loses on uq_user_owned_reward_user_type and
        # the caller's transaction fails as a whole; nothing is half-applied.
        row = UserOwnedReward(user_id=user_id, reward_type=kind_value, quantity=quantity)
        db.add(row)
        db.flush()
        logger.info(f"Granted {quantity} '{kind_value}' to user {user_id} (new entry)")
        return quantity

    row.quantity = row.quantity + quantity
    db.flush()
    logger.info(f"Granted {quantity} '{kind_value}' to user {user_id} (now {row.quantity})")
    return row.quantity


def list_inventory(db: Session, user_id: UUID, include_empty: bool = False) -> List[UserOwnedReward]:
    query = db.query(UserOwnedReward).filter(UserOwnedReward.user_id == user_id).populate_existing()
    if not include_empty:
        query = query.filter(UserOwnedReward.quantity > 0)
    return query.order_by(UserOwnedReward.acquired_at.desc()).all()


def inventory_summary(db: Session, user_id: UUID) -> Dict[str, int]:
    """{kind: quantity} for every reward kind, zeros included."""
    summary = {kind.value: 0 for kind in RewardType}
    for row in list_inventory(db, user_id, include_empty=True):
        summary[row.reward_type] = row.quantity
    return summary
