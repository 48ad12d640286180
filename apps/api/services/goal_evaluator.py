"""
Goal Evaluator

Decides how a single user's day went, given:
    - the active goal (or None)
    - the daily progress record for that date (or None)
    - the record's effective-target override, if a goal reduction was redeemed

Pure logic, no database access. The caller resolves rows; this module only
compares numbers.

Precedence:
    1. Record status already 'skipped'  -> SKIPPED (always wins)
    2. No active goal                   -> NO_ACTIVE_GOAL
    3. No measurement for the goal type -> MISSED
    4. measured >= effective target     -> MET, else MISSED

No unit conversion happens here. Each goal type reads exactly one metric key
from progress_data; any other measurements on the record are ignored.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from models import DailyProgress, Goal, GoalType, ProgressStatus


class SettlementOutcome(str, Enum):
    """Final outcome of a settled day. This is what the app-blocking side reads."""
    MET = "met"
    MISSED = "missed"
    SKIPPED = "skipped"
    MISSED_STREAK_SAVED = "missed_but_streak_saved"
    NO_ACTIVE_GOAL = "no_active_goal"


# progress_data key read for each goal type
GOAL_METRIC_KEYS: Dict[str, str] = {
    GoalType.STEPS.value: "steps_count",
    GoalType.RUN_DISTANCE_KM.value: "distance_ran_km",
}

GOAL_UNITS: Dict[str, str] = {
    GoalType.STEPS.value: "steps",
    GoalType.RUN_DISTANCE_KM.value: "km",
}

# Outcome -> persisted daily_progress.status
OUTCOME_TO_STATUS: Dict[SettlementOutcome, ProgressStatus] = {
    SettlementOutcome.MET: ProgressStatus.COMPLETED,
    SettlementOutcome.MISSED: ProgressStatus.MISSED,
    SettlementOutcome.SKIPPED: ProgressStatus.SKIPPED,
    SettlementOutcome.MISSED_STREAK_SAVED: ProgressStatus.FAILED_STREAK_SAVED,
}

STATUS_TO_OUTCOME: Dict[str, SettlementOutcome] = {
    status.value: outcome for outcome, status in OUTCOME_TO_STATUS.items()
}


@dataclass
class Evaluation:
    outcome: SettlementOutcome
    measured: Optional[float] = None
    target: Optional[float] = None
    target_unit: Optional[str] = None
    reason: str = ""


def effective_target(goal: Goal, progress: Optional[DailyProgress]) -> float:
    """Target for the day: the record's override if present, else the goal's own."""
    if progress is not None and progress.effective_target_value is not None:
        return float(progress.effective_target_value)
    return float(goal.target_value)


def measured_value(goal: Goal, progress: Optional[DailyProgress]) -> Optional[float]:
    """
    The one measurement matching the goal's type, or None if nothing was recorded.

    Unknown goal types and non-numeric values read as "no measurement".
    """
    if progress is None or not progress.progress_data:
        return None
    key = GOAL_METRIC_KEYS.get(goal.goal_type)
    if key is None:
        return None
    raw = progress.progress_data.get(key)
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def evaluate_day(goal: Optional[Goal], progress: Optional[DailyProgress]) -> Evaluation:
    """Compute the day outcome. Never returns MISSED_STREAK_SAVED; that is the streak tracker's recode."""
    if progress is not None and progress.status == ProgressStatus.SKIPPED.value:
        return Evaluation(SettlementOutcome.SKIPPED, reason="skip redeemed")

    if goal is None:
        return Evaluation(SettlementOutcome.NO_ACTIVE_GOAL, reason="no active goal")

    target = effective_target(goal, progress)
    unit = goal.target_unit
    if progress is not None and progress.effective_target_value is not None and progress.effective_target_unit:
        unit = progress.effective_target_unit
    measured = measured_value(goal, progress)

    if measured is None:
        return Evaluation(
            SettlementOutcome.MISSED, measured=None, target=target, target_unit=unit,
            reason="no progress recorded",
        )

    if measured >= target:
        return Evaluation(SettlementOutcome.MET, measured=measured, target=target, target_unit=unit, reason="target reached")

    return Evaluation(SettlementOutcome.MISSED, measured=measured, target=target, target_unit=unit, reason="below target")
