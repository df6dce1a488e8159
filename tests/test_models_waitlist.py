"""Tests for the waitlist priority formula."""

import pytest

from circulation_engine.models.waitlist import (
    ReturnHistory,
    WaitlistWeights,
    compute_priority_score,
    estimated_wait_days,
    return_history_penalty,
)


@pytest.fixture
def weights() -> WaitlistWeights:
    return WaitlistWeights()


class TestPriorityScore:
    def test_waiting_days_count_once_each(self, weights):
        assert compute_priority_score(0, False, ReturnHistory(), weights) == 0.0
        assert compute_priority_score(5, False, ReturnHistory(), weights) == 5.0

    def test_premium_bonus(self, weights):
        normal = compute_priority_score(3, False, ReturnHistory(), weights)
        premium = compute_priority_score(3, True, ReturnHistory(), weights)
        assert premium - normal == 8.0

    def test_premium_newcomer_outranks_a_week_of_waiting(self, weights):
        newcomer = compute_priority_score(0, True, ReturnHistory(), weights)
        waited = compute_priority_score(7, False, ReturnHistory(), weights)
        assert newcomer > waited

    def test_history_penalties_add_up(self, weights):
        history = ReturnHistory(late=2, damaged=1, lost=1)
        assert return_history_penalty(history, weights) == -3 * 2 - 8 - 15

    def test_history_penalties_are_capped(self, weights):
        history = ReturnHistory(late=50, damaged=50, lost=50)
        assert return_history_penalty(history, weights) == -3 * 5 - 8 * 3 - 15 * 2

    def test_negative_waiting_days_rejected(self, weights):
        with pytest.raises(ValueError):
            compute_priority_score(-1, False, ReturnHistory(), weights)

    def test_custom_weights(self):
        weights = WaitlistWeights(waiting_weight=2.0, premium_bonus=0.0)
        assert compute_priority_score(4, True, ReturnHistory(), weights) == 8.0


class TestEstimatedWait:
    def test_one_week_per_position(self, weights):
        assert [estimated_wait_days(p, weights) for p in (1, 2, 3)] == [7, 14, 21]

    def test_position_scale_is_configurable(self):
        assert estimated_wait_days(2, WaitlistWeights(days_per_position=3)) == 6
