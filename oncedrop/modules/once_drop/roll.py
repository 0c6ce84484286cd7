"""
Probability roll for the once-only reward.

Percentages are compared in fixed point (hundredths of a percent) so the
boundary is exact and a seeded or mocked random source reproduces the same
decisions on every run.
"""

from __future__ import annotations

import secrets
from typing import Optional, Protocol

from oncedrop.modules.once_drop.constants import ROLL_SCALE


class RandomSource(Protocol):
    """Anything with an inclusive `randint`; `random.Random` qualifies."""

    def randint(self, a: int, b: int) -> int: ...


_system_random = secrets.SystemRandom()


def chance_threshold(chance_percent: float) -> int:
    """Winning draws out of `ROLL_SCALE`, rounded half up: 1.0% -> 100."""
    return int(chance_percent * 100.0 + 0.5)


def roll_succeeds(chance_percent: float, rng: Optional[RandomSource] = None) -> bool:
    """
    Return True when a roll at `chance_percent` succeeds.

    <= 0 always fails and >= 100 always succeeds without drawing. Otherwise
    a uniform integer in [1, 10000] is drawn and must not exceed the
    threshold.
    """
    if chance_percent <= 0.0:
        return False
    if chance_percent >= 100.0:
        return True

    source = rng if rng is not None else _system_random
    draw = source.randint(1, ROLL_SCALE)
    return draw <= chance_threshold(chance_percent)
