"""
Streak Tracker

Per-user daily streak state machine driven by a settled day outcome:

    met             -> ADVANCE (streak + 1)
    skipped         -> HOLD
    no_active_goal  -> HOLD (day does not count either way)
    missed + saver  -> HOLD, one streak_saver consumed, outcome recoded to
                       missed_but_streak_saved, streak_saver_applied row written
    missed, none    -> RESET (streak = 0)

A streak saver is applied at most once per (user, date). If the
streak_saver_applied row for the date already exists the save is reused and
inventory is not touched again.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum

from sqlalchemy.orm import Session

from models import RewardType, StreakSaverApplied, UserProfile
from services import reward_inventory
from services.goal_evaluator import SettlementOutcome

logger = logging.getLogger(__name__)


class StreakTransition(str, Enum):
    ADVANCE = "advance"
    HOLD = "hold"
    RESET = "reset"


@dataclass
class StreakResult:
    outcome: SettlementOutcome
    transition: StreakTransition
    previous_streak: int
    new_streak: int
    saver_consumed: bool = False


def next_streak(current: int, transition: StreakTransition) -> int:
    if transition == StreakTransition.ADVANCE:
        return current + 1
    if transition == StreakTransition.RESET:
        return 0
    return current


def saver_applied_on(db: Session, user_id, day: date) -> bool:
    return (
        db.query(StreakSaverApplied.id)
        .filter(StreakSaverApplied.user_id == user_id, StreakSaverApplied.date_saved == day)
        .first()
        is not None
    )


def _consume_streak_saver(db: Session, user_id, day: date) -> bool:
    """
    Take one streak saver from inventory and record it against `day`.

    Both writes are flushed in the caller's transaction, ahead of the
    status/streak writes.
    """
    if not reward_inventory.consume_one(db, user_id, RewardType.STREAK_SAVER):
        return False
    db.add(StreakSaverApplied(user_id=user_id, date_saved=day))
    db.flush()
    return True


def apply_outcome(db: Session, profile: UserProfile, outcome: SettlementOutcome, day: date) -> StreakResult:
    """
    Apply the transition for `outcome` to the (locked) profile.

    Mutates and flushes profile.current_streak_length / longest_streak_length;
    the caller commits.
    """
    previous = int(profile.current_streak_length or 0)
    saver_consumed = False

    if outcome == SettlementOutcome.MET:
        transition = StreakTransition.ADVANCE
    elif outcome in (SettlementOutcome.SKIPPED, SettlementOutcome.NO_ACTIVE_GOAL,
                     SettlementOutcome.MISSED_STREAK_SAVED):
        transition = StreakTransition.HOLD
    elif outcome == SettlementOutcome.MISSED:
        if saver_applied_on(db, profile.user_id, day):
            logger.info(f"Streak saver already applied for user {profile.user_id} on {day}; reusing")
            transition = StreakTransition.HOLD
            outcome = SettlementOutcome.MISSED_STREAK_SAVED
        elif _consume_streak_saver(db, profile.user_id, day):
            transition = StreakTransition.HOLD
            outcome = SettlementOutcome.MISSED_STREAK_SAVED
            saver_consumed = True
        else:
            transition = StreakTransition.RESET
    else:
        raise ValueError(f"Unknown settlement outcome: {outcome}")

    new = next_streak(previous, transition)
    profile.current_streak_length = new
    if new > int(profile.longest_streak_length or 0):
        profile.longest_streak_length = new
    # Later row locks on the profile use populate_existing; flush first.
    db.flush()

    logger.info(
        f"Streak for user {profile.user_id} on {day}: {outcome.value} "
        f"-> {transition.value} ({previous} -> {new})"
    )
    return StreakResult(
        outcome=outcome,
        transition=transition,
        previous_streak=previous,
        new_streak=new,
        saver_consumed=saver_consumed,
    )
