"""
Coin Ledger

Append-only coin transactions plus the cached balance on user_profile.

Invariant: user_profile.coin_balance == SUM(coin_transaction.coin_change)
for that user, at every commit. award() keeps it by appending and then
recomputing the balance from the log inside the same transaction, while the
profile row is locked (single writer per user).

Sign rules per transaction type:
    goal_completion_reward, streak_bonus   delta >= 0
    reward_redemption                      delta <= 0, checked against balance first
    manual                                 any sign, resulting balance must stay >= 0

An idempotency key makes an append at-most-once per user: a repeated key
returns the earlier transaction instead of paying again.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.exceptions import InsufficientFundsError, InvalidLedgerEntryError, ProfileNotFoundError
from models import CoinTransaction, TransactionType, UserProfile

logger = logging.getLogger(__name__)

NON_NEGATIVE_TYPES = {TransactionType.GOAL_REWARD.value, TransactionType.STREAK_BONUS.value}
NON_POSITIVE_TYPES = {TransactionType.REWARD_REDEMPTION.value}


@dataclass
class LedgerAppend:
    transaction: CoinTransaction
    balance: int
    created: bool  # False when an idempotency key matched an earlier append


def lock_profile(db: Session, user_id: UUID) -> UserProfile:
    """Load the profile with a row lock held until the caller's transaction ends."""
    profile = (
        db.query(UserProfile)
        .filter(UserProfile.user_id == user_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if profile is None:
        raise ProfileNotFoundError(user_id)
    return profile


def balance_from_ledger(db: Session, user_id: UUID) -> int:
    total = (
        db.query(func.coalesce(func.sum(CoinTransaction.coin_change), 0))
        .filter(CoinTransaction.user_id == user_id)
        .scalar()
    )
    return int(total or 0)


def _validate_sign(delta: int, kind: str) -> None:
    if kind in NON_NEGATIVE_TYPES and delta < 0:
        raise InvalidLedgerEntryError(f"'{kind}' transactions cannot dock coins (delta={delta})")
    if kind in NON_POSITIVE_TYPES and delta > 0:
        raise InvalidLedgerEntryError(f"'{kind}' transactions cannot add coins (delta={delta})")


def award(
    db: Session,
    user_id: UUID,
    delta: int,
    kind,
    description: str,
    related_goal_id: Optional[UUID] = None,
    idempotency_key: Optional[str] = None,
) -> LedgerAppend:
    """
    Append one transaction and persist the recomputed balance.

    Does not commit; the append and the balance update become durable together
    with whatever else the caller's unit of work contains.
    """
    kind_value = TransactionType(kind).value
    delta = int(delta)
    _validate_sign(delta, kind_value)

    profile = lock_profile(db, user_id)

    if idempotency_key is not None:
        existing = (
            db.query(CoinTransaction)
            .filter(CoinTransaction.user_id == user_id, CoinTransaction.idempotency_key == idempotency_key)
            .first()
        )
        if existing is not None:
            logger.info(f"Ledger idempotent hit for user {user_id}: {idempotency_key}")
            return LedgerAppend(transaction=existing, balance=profile.coin_balance, created=False)

    current = balance_from_ledger(db, user_id)
    if current + delta < 0:
        raise InsufficientFundsError(user_id, current_balance=current, requested_amount=-delta)

    txn = CoinTransaction(
        user_id=user_id,
        coin_change=delta,
        type=kind_value,
        related_goal_id=related_goal_id,
        description=description,
        idempotency_key=idempotency_key,
    )
    db.add(txn)
    db.flush()

    profile.coin_balance = balance_from_ledger(db, user_id)
    db.flush()

    logger.info(f"Ledger {kind_value} {delta:+d} for user {user_id} -> balance {profile.coin_balance}")
    return LedgerAppend(transaction=txn, balance=profile.coin_balance, created=True)


def redeem(
    db: Session,
    user_id: UUID,
    cost: int,
    description: str,
    idempotency_key: Optional[str] = None,
) -> LedgerAppend:
    """Spend coins. Raises InsufficientFundsError before anything is appended."""
    if cost < 0:
        raise InvalidLedgerEntryError(f"redemption cost cannot be negative (cost={cost})")
    return award(
        db,
        user_id,
        -cost,
        TransactionType.REWARD_REDEMPTION,
        description,
        idempotency_key=idempotency_key,
    )


def reconcile_balance(db: Session, user_id: UUID) -> Dict:
    """
    Repair the cached balance from the transaction log alone.

    Returns {"user_id", "cached", "ledger", "drift"}; drift is ledger - cached.
    """
    profile = lock_profile(db, user_id)
    cached = int(profile.coin_balance or 0)
    ledger = balance_from_ledger(db, user_id)
    if cached != ledger:
        logger.warning(f"Coin balance drift for user {user_id}: cached={cached} ledger={ledger}")
        profile.coin_balance = ledger
        db.flush()
    return {"user_id": str(user_id), "cached": cached, "ledger": ledger, "drift": ledger - cached}


def reconcile_all_balances(db: Session) -> Dict:
    """Run reconcile_balance() for every profile. Caller commits."""
    user_ids = [row[0] for row in db.query(UserProfile.user_id).all()]
    repaired = []
    for user_id in user_ids:
        result = reconcile_balance(db, user_id)
        if result["drift"]:
            repaired.append(result)
    logger.info(f"Reconciled {len(user_ids)} coin balances, {len(repaired)} repaired")
    return {"checked": len(user_ids), "repaired": repaired}


def recent_transactions(db: Session, user_id: UUID, limit: int = 50) -> List[CoinTransaction]:
    return (
        db.query(CoinTransaction)
        .filter(CoinTransaction.user_id == user_id)
        .order_by(CoinTransaction.created_at.desc())
        .limit(limit)
        .all()
    )
