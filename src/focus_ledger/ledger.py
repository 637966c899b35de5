"""Reward ledger: turns newly completed cycles into rest-minute credits."""

from __future__ import annotations

from dataclasses import dataclass

from .models import CycleSettings, Reward, RewardKind


@dataclass(frozen=True)
class LedgerOutcome:
    rest_minutes_credited: int
    bonus_count: int
    normal_count: int
    pending_remaining: int
    manual_count: int

    @property
    def reward(self) -> Reward | None:
        if self.rest_minutes_credited <= 0:
            return None
        kind = RewardKind.BONUS if self.bonus_count > 0 else RewardKind.NORMAL
        return Reward(
            minutes_credited=self.rest_minutes_credited,
            kind=kind,
            bonus_count=self.bonus_count,
            normal_count=self.normal_count,
            message=reward_message(self.rest_minutes_credited, self.bonus_count, self.normal_count),
        )


def is_bonus_cycle(cycle_index: int, bonus_every_nth: int) -> bool:
    return cycle_index > 0 and cycle_index % bonus_every_nth == 0


def apply_cycle_delta(
    previous_cycles: int,
    new_cycles: int,
    pending: int,
    settings: CycleSettings,
) -> LedgerOutcome:
    """Credit rest minutes for the cycles between ``previous_cycles`` and ``new_cycles``.

    Pending manual adjustments are absorbed first and earn nothing. The
    remaining cycles are scored by their absolute index, so bonus placement
    stays aligned with the true count after a manual increment.
    """
    total_delta = new_cycles - previous_cycles
    if total_delta <= 0:
        return LedgerOutcome(0, 0, 0, pending, 0)

    manual_count = min(total_delta, pending)
    giftable_count = total_delta - manual_count

    minutes = 0
    bonus_count = 0
    normal_count = 0
    first_index = previous_cycles + manual_count
    for i in range(1, giftable_count + 1):
        if is_bonus_cycle(first_index + i, settings.bonus_every_nth):
            minutes += settings.bonus_reward_minutes
            bonus_count += 1
        else:
            minutes += settings.normal_reward_minutes
            normal_count += 1

    return LedgerOutcome(
        rest_minutes_credited=minutes,
        bonus_count=bonus_count,
        normal_count=normal_count,
        pending_remaining=pending - manual_count,
        manual_count=manual_count,
    )


def reward_message(minutes: int, bonus_count: int, normal_count: int) -> str:
    if bonus_count > 0 and normal_count > 0:
        return f"Gifts! You've earned {minutes} minutes of rest."
    if bonus_count > 0:
        return f"Super Gift! You've earned {minutes} minutes of rest."
    return f"Gift! You've earned {minutes} minutes of rest."
