"""Recurrence classes and their streak thresholds.

Pure lookups, no side effects. Each frequency maps to:

- a grace window: how long a never-completed task stays alive after creation
- a renewal window: how long a streak survives after the last completion
- an XP reward paid for each completion
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from gyst.errors import InvalidFrequencyError


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class FrequencyPolicy:
    frequency: Frequency
    grace_window: timedelta
    renewal_window: timedelta
    xp_reward: int


ONE_DAY = timedelta(days=1)
ONE_WEEK = timedelta(days=7)
ONE_MONTH = timedelta(days=30)

POLICIES: dict[Frequency, FrequencyPolicy] = {
    Frequency.DAILY: FrequencyPolicy(
        frequency=Frequency.DAILY,
        grace_window=ONE_DAY,
        renewal_window=2 * ONE_DAY,
        xp_reward=10,
    ),
    Frequency.WEEKLY: FrequencyPolicy(
        frequency=Frequency.WEEKLY,
        grace_window=ONE_WEEK,
        renewal_window=ONE_WEEK + ONE_DAY,
        xp_reward=30,
    ),
    Frequency.MONTHLY: FrequencyPolicy(
        frequency=Frequency.MONTHLY,
        grace_window=ONE_MONTH,
        renewal_window=ONE_MONTH + ONE_DAY,
        xp_reward=50,
    ),
}


def parse_frequency(value: str | Frequency) -> Frequency:
    """Validate a user-supplied frequency. Raises InvalidFrequencyError."""
    if isinstance(value, Frequency):
        return value
    try:
        return Frequency(str(value).strip().lower())
    except ValueError:
        raise InvalidFrequencyError(value) from None


def policy_for(frequency: str | Frequency | None) -> FrequencyPolicy | None:
    """Return the policy for a stored frequency, or None if it is not recognised.

    Legacy rows may carry an empty or unknown value; callers treat those as
    never expiring.
    """
    if frequency is None:
        return None
    try:
        return POLICIES[Frequency(frequency)]
    except ValueError:
        return None


def reward_for(frequency: str | Frequency | None) -> int:
    """XP paid for one completion. 0 for unknown frequencies."""
    policy = policy_for(frequency)
    return policy.xp_reward if policy else 0
