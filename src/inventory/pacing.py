from __future__ import annotations

import random


def slots_remaining(posted_today: int, daily_max: int) -> int:
    return max(0, daily_max - posted_today)


def random_delay_seconds(rng: random.Random, min_seconds: float, max_seconds: float) -> float:
    return rng.uniform(min_seconds, max_seconds)
