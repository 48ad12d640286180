"""
Reward Inventory Tests

consume_one() is a compare-and-swap on quantity > 0: it can never take the
quantity below zero, and a failed consume leaves the row untouched.
"""

import threading

import pytest

from core.exceptions import InsufficientRewardError
from services import reward_inventory


class TestConsume:
    def test_consume_decrements_by_one(self, db_session, make_user, grant_reward):
        user = make_user()
        grant_reward(user.user_id, "skip_day", 2)

        assert reward_inventory.consume_one(db_session, user.user_id, "skip_day") is True
        db_session.commit()

        assert reward_inventory.available(db_session, user.user_id, "skip_day") == 1

    def test_consume_at_zero_fails_without_effect(self, db_session, make_user, grant_reward):
        user = make_user()
        grant_reward(user.user_id, "streak_saver", 1)

        assert reward_inventory.consume_one(db_session, user.user_id, "streak_saver") is True
        assert reward_inventory.consume_one(db_session, user.user_id, "streak_saver") is False
        db_session.commit()

        assert reward_inventory.available(db_session, user.user_id, "streak_saver") == 0
        summary = reward_inventory.inventory_summary(db_session, user.user_id)
        assert summary["streak_saver"] == 0

    def test_consume_never_owned(self, db_session, make_user):
        user = make_user()
        assert reward_inventory.consume_one(db_session, user.user_id, "goal_reduction") is False
        assert reward_inventory.available(db_session, user.user_id, "goal_reduction") == 0

    def test_require_one_raises_on_empty(self, db_session, make_user):
        user = make_user()
        with pytest.raises(InsufficientRewardError) as exc_info:
            reward_inventory.require_one(db_session, user.user_id, "skip_day")
        assert exc_info.value.kind == "skip_day"

    def test_second_session_loses_after_first_commits(self, session_factory, make_user, grant_reward):
        """Two consumers of the last unit: exactly one wins."""
        user = make_user()
        grant_reward(user.user_id, "streak_saver", 1)

        first = session_factory()
        second = session_factory()
        try:
            assert reward_inventory.consume_one(first, user.user_id, "streak_saver") is True
            first.commit()
            assert reward_inventory.consume_one(second, user.user_id, "streak_saver") is False
            second.commit()
            assert reward_inventory.available(second, user.user_id, "streak_saver") == 0
        finally:
            first.close()
            second.close()

    def test_threads_racing_for_last_unit(self, session_factory, locking_session_factory, make_user, grant_reward):
        user = make_user()
        grant_reward(user.user_id, "streak_saver", 1)

        start = threading.Barrier(3)
        outcomes = []

        def consume():
            db = locking_session_factory()
            try:
                start.wait()
                outcomes.append(reward_inventory.consume_one(db, user.user_id, "streak_saver"))
                db.commit()
            finally:
                db.close()

        threads = [threading.Thread(target=consume) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        assert sorted(outcomes) == [False, False, True]
        db = session_factory()
        try:
            assert reward_inventory.available(db, user.user_id, "streak_saver") == 0
        finally:
            db.close()

    def test_rolled_back_consume_restores_quantity(self, db_session, make_user, grant_reward):
        user = make_user()
        grant_reward(user.user_id, "skip_day", 1)

        assert reward_inventory.consume_one(db_session, user.user_id, "skip_day") is True
        db_session.rollback()

        assert reward_inventory.available(db_session, user.user_id, "skip_day") == 1


class TestGrant:
    def test_grant_creates_then_increments(self, db_session, make_user):
        user = make_user()
        assert reward_inventory.grant(db_session, user.user_id, "skip_day") == 1
        assert reward_inventory.grant(db_session, user.user_id, "skip_day", 2) == 3
        db_session.commit()

        rows = reward_inventory.list_inventory(db_session, user.user_id)
        assert len(rows) == 1
        assert rows[0].quantity == 3

    def test_grant_rejects_non_positive(self, db_session, make_user):
        user = make_user()
        with pytest.raises(ValueError):
            reward_inventory.grant(db_session, user.user_id, "skip_day", 0)

    def test_unknown_kind_rejected(self, db_session, make_user):
        user = make_user()
        with pytest.raises(ValueError):
            reward_inventory.available(db_session, user.user_id, "double_coins")

    def test_list_hides_empty_rows_by_default(self, db_session, make_user, grant_reward):
        user = make_user()
        grant_reward(user.user_id, "skip_day", 1)
        grant_reward(user.user_id, "goal_reduction", 1)
        reward_inventory.consume_one(db_session, user.user_id, "skip_day")
        db_session.commit()

        kinds = [row.reward_type for row in reward_inventory.list_inventory(db_session, user.user_id)]
        assert kinds == ["goal_reduction"]
        assert len(reward_inventory.list_inventory(db_session, user.user_id, include_empty=True)) == 2
