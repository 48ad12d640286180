"""
Goal Evaluator Tests

Pure comparisons: no database, models are built in memory.
"""

from models import DailyProgress, Goal
from services.goal_evaluator import SettlementOutcome, effective_target, evaluate_day, measured_value


def _goal(goal_type="steps", target=10000, unit="steps"):
    return Goal(goal_type=goal_type, target_value=target, target_unit=unit)


def _progress(status="pending", effective=None, effective_unit=None, **data):
    return DailyProgress(
        status=status,
        progress_data=data,
        effective_target_value=effective,
        effective_target_unit=effective_unit,
    )


class TestPrecedence:
    def test_skipped_wins_over_everything(self):
        """A redeemed skip short-circuits, even with the target exceeded."""
        result = evaluate_day(_goal(), _progress(status="skipped", steps_count=50000))
        assert result.outcome == SettlementOutcome.SKIPPED

    def test_skipped_wins_without_goal(self):
        result = evaluate_day(None, _progress(status="skipped"))
        assert result.outcome == SettlementOutcome.SKIPPED

    def test_no_goal(self):
        assert evaluate_day(None, _progress(steps_count=12000)).outcome == SettlementOutcome.NO_ACTIVE_GOAL
        assert evaluate_day(None, None).outcome == SettlementOutcome.NO_ACTIVE_GOAL

    def test_goal_without_record_is_missed(self):
        result = evaluate_day(_goal(), None)
        assert result.outcome == SettlementOutcome.MISSED
        assert result.measured is None

    def test_goal_with_empty_measurements_is_missed(self):
        assert evaluate_day(_goal(), _progress()).outcome == SettlementOutcome.MISSED


class TestComparison:
    def test_exactly_at_target_is_met(self):
        assert evaluate_day(_goal(), _progress(steps_count=10000)).outcome == SettlementOutcome.MET

    def test_below_target_is_missed(self):
        result = evaluate_day(_goal(), _progress(steps_count=9999))
        assert result.outcome == SettlementOutcome.MISSED
        assert result.measured == 9999
        assert result.target == 10000

    def test_only_matching_metric_is_used(self):
        """Distance does not count toward a step goal."""
        result = evaluate_day(_goal(), _progress(distance_ran_km=42.0))
        assert result.outcome == SettlementOutcome.MISSED

    def test_run_distance_goal(self):
        goal = _goal(goal_type="run_distance_km", target=5.0, unit="km")
        assert evaluate_day(goal, _progress(distance_ran_km=5.2, steps_count=1)).outcome == SettlementOutcome.MET
        assert evaluate_day(goal, _progress(distance_ran_km=4.99)).outcome == SettlementOutcome.MISSED

    def test_override_replaces_goal_target(self):
        progress = _progress(effective=7500, effective_unit="steps", steps_count=8000)
        result = evaluate_day(_goal(), progress)
        assert result.outcome == SettlementOutcome.MET
        assert result.target == 7500
        assert effective_target(_goal(), progress) == 7500

    def test_non_numeric_measurement_reads_as_missing(self):
        assert measured_value(_goal(), _progress(steps_count="lots")) is None
        assert measured_value(_goal(), _progress(steps_count=True)) is None

    def test_unknown_goal_type_reads_as_missing(self):
        goal = _goal(goal_type="swim_laps")
        assert measured_value(goal, _progress(steps_count=100)) is None
