"""Reward ledger: bonus placement, manual-cycle exclusion, reward wording."""

import pytest

from focus_ledger.ledger import apply_cycle_delta, is_bonus_cycle, reward_message
from focus_ledger.models import CycleSettings, RewardKind

DEFAULTS = CycleSettings()


class TestIsBonusCycle:
    @pytest.mark.parametrize("index,expected", [(1, False), (3, False), (4, True), (8, True), (9, False)])
    def test_every_fourth(self, index, expected):
        assert is_bonus_cycle(index, 4) is expected

    def test_zero_is_never_a_bonus(self):
        assert not is_bonus_cycle(0, 4)


class TestApplyCycleDelta:
    def test_no_change(self):
        outcome = apply_cycle_delta(3, 3, 2, DEFAULTS)
        assert outcome.rest_minutes_credited == 0
        assert outcome.pending_remaining == 2
        assert outcome.reward is None

    def test_decrease_credits_nothing(self):
        outcome = apply_cycle_delta(5, 2, 0, DEFAULTS)
        assert outcome.rest_minutes_credited == 0
        assert outcome.reward is None

    def test_single_normal_cycle(self):
        outcome = apply_cycle_delta(0, 1, 0, DEFAULTS)
        assert outcome.rest_minutes_credited == 5
        assert outcome.normal_count == 1
        assert outcome.reward.kind == RewardKind.NORMAL

    def test_bonus_lands_on_true_index(self):
        """Cycles 3, 4, 5 score as normal, bonus, normal."""
        outcome = apply_cycle_delta(2, 5, 0, DEFAULTS)
        assert outcome.rest_minutes_credited == 5 + 15 + 5
        assert outcome.bonus_count == 1
        assert outcome.normal_count == 2
        assert outcome.reward.kind == RewardKind.BONUS

    def test_batch_across_two_bonuses(self):
        outcome = apply_cycle_delta(0, 8, 0, DEFAULTS)
        assert outcome.rest_minutes_credited == 6 * 5 + 2 * 15
        assert outcome.bonus_count == 2
        assert outcome.normal_count == 6

    def test_manual_cycle_earns_nothing(self):
        outcome = apply_cycle_delta(3, 4, 1, DEFAULTS)
        assert outcome.rest_minutes_credited == 0
        assert outcome.pending_remaining == 0
        assert outcome.manual_count == 1
        assert outcome.reward is None

    def test_pending_absorbs_only_what_it_can(self):
        outcome = apply_cycle_delta(0, 2, 3, DEFAULTS)
        assert outcome.manual_count == 2
        assert outcome.pending_remaining == 1
        assert outcome.rest_minutes_credited == 0

    def test_scoring_resumes_after_manual_cycles(self):
        """One manual cycle at index 3, the organic one after it is index 4."""
        outcome = apply_cycle_delta(2, 4, 1, DEFAULTS)
        assert outcome.manual_count == 1
        assert outcome.bonus_count == 1
        assert outcome.rest_minutes_credited == 15

    def test_custom_settings(self):
        settings = CycleSettings(cycle_length_seconds=600, normal_reward_minutes=2,
                                 bonus_reward_minutes=10, bonus_every_nth=3)
        outcome = apply_cycle_delta(0, 6, 0, settings)
        assert outcome.rest_minutes_credited == 4 * 2 + 2 * 10


class TestRewardMessage:
    def test_normal_only(self):
        assert reward_message(5, 0, 1) == "Gift! You've earned 5 minutes of rest."

    def test_bonus_only(self):
        assert reward_message(15, 1, 0) == "Super Gift! You've earned 15 minutes of rest."

    def test_mixed(self):
        assert reward_message(25, 1, 2) == "Gifts! You've earned 25 minutes of rest."

    def test_reward_carries_message(self):
        reward = apply_cycle_delta(3, 4, 0, DEFAULTS).reward
        assert reward.message.startswith("Super Gift!")
        assert reward.to_dict()["classification"] == "bonus"
