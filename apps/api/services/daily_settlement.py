"""
Daily Settlement Orchestrator

Once per day, finalize every user's outcome for "yesterday" (reference zone):

    load      lock profile, load the day's record and the goal it is judged against
    evaluate  goal_evaluator.evaluate_day()
    streak    streak_tracker.apply_outcome()  (may consume a streak saver)
    ledger    goal coins, streak bonus, saver audit entry
    persist   status + settled_at on the daily progress record

Design:
    - One user = one transaction. Inventory decrement, streak change, ledger
      appends and the final status commit together or not at all.
    - A record with settled_at set is final; re-running a date is a no-op.
      Ledger appends carry per-date idempotency keys on top of that.
    - One user's failure does NOT block others. Transient database errors are
      retried with backoff; anything still failing is written to
      settlement_failure and retried by the next run or by hand.
    - A user whose settlement failed keeps a 'pending' day until a later run
      succeeds.
"""

import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from core import cache
from core.config import settings
from core.database import SessionLocal
from core.exceptions import SettlementError, is_transient_error
from core.logging import settlement_context
from models import SettlementFailure, TransactionType, UserProfile
from services import coin_ledger, daily_progress, streak_tracker
from services.goal_evaluator import OUTCOME_TO_STATUS, SettlementOutcome, evaluate_day
from services.settlement_calendar import is_settleable, settlement_date_for

logger = logging.getLogger(__name__)


@dataclass
class UserSettlement:
    user_id: UUID
    settlement_date: date
    outcome: SettlementOutcome
    previous_streak: int = 0
    new_streak: int = 0
    coins_awarded: int = 0
    saver_consumed: bool = False
    already_settled: bool = False

    def to_dict(self) -> Dict:
        return {
            "user_id": str(self.user_id),
            "date": self.settlement_date.isoformat(),
            "outcome": self.outcome.value,
            "previous_streak": self.previous_streak,
            "new_streak": self.new_streak,
            "coins_awarded": self.coins_awarded,
            "saver_consumed": self.saver_consumed,
            "already_settled": self.already_settled,
        }


def settle_user(db: Session, user_id: UUID, settlement_date: date) -> UserSettlement:
    """
    Settle one user for one date inside the caller's transaction.

    Does not commit. Any failure is raised as SettlementError tagged with the
    stage it happened in; the caller rolls back.
    """
    stage = "load"
    try:
        profile = coin_ledger.lock_profile(db, user_id)
        record = daily_progress.get_record(db, user_id, settlement_date, lock=True)

        if record is not None and record.settled_at is not None:
            logger.info(
                f"User {user_id} already settled for {settlement_date}; skipping",
                extra=settlement_context(user_id, settlement_date, stage),
            )
            streak = int(profile.current_streak_length or 0)
            return UserSettlement(
                user_id=user_id,
                settlement_date=settlement_date,
                outcome=daily_progress.outcome_of(record),
                previous_streak=streak,
                new_streak=streak,
                already_settled=True,
            )

        goal = daily_progress.goal_for_day(db, user_id, settlement_date, record)

        stage = "evaluate"
        evaluation = evaluate_day(goal, record)
        if evaluation.outcome == SettlementOutcome.SKIPPED:
            logger.info(f"User {user_id} skipped {settlement_date}; no coins, streak held")

        stage = "streak"
        streak = streak_tracker.apply_outcome(db, profile, evaluation.outcome, settlement_date)
        outcome = streak.outcome

        stage = "ledger"
        coins = 0
        day_key = settlement_date.isoformat()
        if outcome == SettlementOutcome.MET:
            base = coin_ledger.award(
                db,
                user_id,
                settings.COINS_FOR_DAILY_GOAL_COMPLETION,
                TransactionType.GOAL_REWARD,
                f"Completed daily goal for {day_key}",
                related_goal_id=goal.id,
                idempotency_key=f"goal:{day_key}",
            )
            if base.created:
                coins += base.transaction.coin_change
            if streak.new_streak >= settings.STREAK_BONUS_THRESHOLD_DAYS:
                bonus = coin_ledger.award(
                    db,
                    user_id,
                    settings.STREAK_BONUS_COINS_PER_DAY,
                    TransactionType.STREAK_BONUS,
                    f"Streak bonus: {streak.new_streak} days",
                    related_goal_id=goal.id,
                    idempotency_key=f"streak_bonus:{day_key}",
                )
                if bonus.created:
                    coins += bonus.transaction.coin_change
        elif streak.saver_consumed:
            coin_ledger.award(
                db,
                user_id,
                0,
                TransactionType.MANUAL,
                f"Streak saver used for {day_key}",
                related_goal_id=goal.id if goal else None,
                idempotency_key=f"streak_saver:{day_key}",
            )

        stage = "persist"
        if record is None and goal is not None:
            record = daily_progress.get_or_create(db, user_id, settlement_date, goal_id=goal.id)
        if record is not None:
            status = OUTCOME_TO_STATUS.get(outcome)
            if status is not None:
                record.status = status.value
            if record.goal_id is None and goal is not None:
                record.goal_id = goal.id
            record.settled_at = datetime.now(timezone.utc)
            db.flush()

        logger.info(
            f"Settled user {user_id} for {settlement_date}: {outcome.value}, "
            f"streak {streak.previous_streak} -> {streak.new_streak}, +{coins} coins",
            extra=settlement_context(user_id, settlement_date, stage),
        )
        return UserSettlement(
            user_id=user_id,
            settlement_date=settlement_date,
            outcome=outcome,
            previous_streak=streak.previous_streak,
            new_streak=streak.new_streak,
            coins_awarded=coins,
            saver_consumed=streak.saver_consumed,
        )
    except SettlementError:
        raise
    except Exception as e:
        raise SettlementError(user_id, settlement_date, stage, e) from e


def _resolve_failures(db: Session, user_id: UUID, settlement_date: date) -> int:
    return (
        db.query(SettlementFailure)
        .filter(
            SettlementFailure.user_id == user_id,
            SettlementFailure.settlement_date == settlement_date,
            SettlementFailure.resolved_at.is_(None),
        )
        .update({SettlementFailure.resolved_at: datetime.now(timezone.utc)}, synchronize_session=False)
    )


def _flag_failure(
    session_factory: Callable[[], Session],
    error: SettlementError,
    attempts: int,
) -> None:
    """Record a user whose settlement gave up, in its own transaction."""
    db = session_factory()
    try:
        db.add(SettlementFailure(
            user_id=error.user_id,
            settlement_date=error.settlement_date,
            stage=error.stage,
            error=f"{type(error.cause).__name__}: {error.cause}"[:2000],
            attempts=attempts,
        ))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(
            f"Could not flag settlement failure for user {error.user_id}: {e}",
            exc_info=True,
            extra=settlement_context(error.user_id, error.settlement_date, error.stage, attempt=attempts),
        )
    finally:
        db.close()


def settle_user_with_retry(
    user_id: UUID,
    settlement_date: date,
    session_factory: Callable[[], Session] = SessionLocal,
    max_attempts: Optional[int] = None,
    backoff_s: Optional[float] = None,
) -> UserSettlement:
    """
    Settle and commit one user, retrying transient failures on a fresh session.

    Raises SettlementError once the user is given up on for this run; the
    failure has already been written to settlement_failure by then.
    """
    max_attempts = max_attempts or settings.SETTLEMENT_MAX_ATTEMPTS
    backoff_s = settings.SETTLEMENT_RETRY_BACKOFF_S if backoff_s is None else backoff_s

    attempt = 0
    while True:
        attempt += 1
        db = session_factory()
        try:
            result = settle_user(db, user_id, settlement_date)
            if not result.already_settled:
                _resolve_failures(db, user_id, settlement_date)
            db.commit()
        except Exception as e:
            db.rollback()
            error = e if isinstance(e, SettlementError) else SettlementError(user_id, settlement_date, "commit", e)
            retry = is_transient_error(error) and attempt < max_attempts
            logger.error(
                f"Settlement attempt {attempt}/{max_attempts} failed for user {user_id} "
                f"on {settlement_date} at stage '{error.stage}': {error.cause}",
                exc_info=not retry,
                extra=settlement_context(user_id, settlement_date, error.stage, attempt=attempt, will_retry=retry),
            )
            if retry:
                time.sleep(backoff_s * (2 ** (attempt - 1)))
                continue
            _flag_failure(session_factory, error, attempt)
            if e is error:
                raise
            raise error from e
        finally:
            db.close()

        cache.invalidate_settlement_status(user_id, settlement_date)
        return result


def _all_user_ids(session_factory: Callable[[], Session]) -> List[UUID]:
    db = session_factory()
    try:
        return [row[0] for row in db.query(UserProfile.user_id).order_by(UserProfile.created_at).all()]
    finally:
        db.close()


def run_daily_settlement(
    settlement_date: Optional[date] = None,
    now: Optional[datetime] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    max_workers: Optional[int] = None,
) -> Dict:
    """
    Settle every user with a profile for one date (default: yesterday).

    Returns a summary dict for monitoring:
        {"status", "date", "users_processed", "settled", "already_settled",
         "outcomes", "coins_awarded", "errors"}
    """
    day = settlement_date or settlement_date_for(now)
    if not is_settleable(day, now):
        raise ValueError(f"Cannot settle {day}: only past dates can be settled")

    lock_name = f"settlement:{day.isoformat()}"
    if not cache.acquire_lock(lock_name, settings.SETTLEMENT_LOCK_TTL_S):
        logger.warning(f"Daily settlement for {day} already running; skipping this invocation")
        return {"status": "locked", "date": day.isoformat(), "users_processed": 0}

    started = time.time()
    try:
        user_ids = _all_user_ids(session_factory)
        workers = max_workers or settings.SETTLEMENT_WORKERS
        logger.info(f"Daily settlement for {day}: {len(user_ids)} users, {workers} worker(s)")

        results: List[UserSettlement] = []
        errors: List[Dict] = []

        def _record_error(user_id: UUID, e: Exception) -> None:
            errors.append({
                "user_id": str(user_id),
                "stage": getattr(e, "stage", "unknown"),
                "error": str(getattr(e, "cause", e)),
            })

        if workers <= 1:
            for user_id in user_ids:
                try:
                    results.append(settle_user_with_retry(user_id, day, session_factory))
                except Exception as e:
                    _record_error(user_id, e)
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {
                    pool.submit(settle_user_with_retry, user_id, day, session_factory): user_id
                    for user_id in user_ids
                }
                for future in as_completed(futures):
                    try:
                        results.append(future.result())
                    except Exception as e:
                        _record_error(futures[future], e)

        outcomes = Counter(r.outcome.value for r in results)
        summary = {
            "status": "ok" if not errors else "partial",
            "date": day.isoformat(),
            "users_processed": len(user_ids),
            "settled": sum(1 for r in results if not r.already_settled),
            "already_settled": sum(1 for r in results if r.already_settled),
            "outcomes": dict(outcomes),
            "coins_awarded": sum(r.coins_awarded for r in results),
            "errors": errors,
            "elapsed_s": round(time.time() - started, 3),
        }
        logger.info(
            f"Daily settlement for {day} done: {summary['settled']} settled, "
            f"{summary['already_settled']} already settled, {len(errors)} errors"
        )
        return summary
    finally:
        cache.release_lock(lock_name)
