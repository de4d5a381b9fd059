from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ParserConfig:
    line_tolerance: float = 3.0  # points
    min_mileage: int = 100
    max_mileage: int = 999_999
    boilerplate_markers: tuple[str, ...] = (
        "vAuto, Inc.",
        "http://www.vauto.com",
        "(877) 828-8614",
    )
    header_prefixes: tuple[str, ...] = ("Make/Model", "Pricing (Default)")


@dataclass(frozen=True)
class PostingConfig:
    daily_max_posts: int = 10
    min_delay_seconds: float = 10 * 60
    max_delay_seconds: float = 15 * 60
    stop_poll_seconds: float = 5.0
    stuck_posting_minutes: int = 30
    poster_cron: str = "0 9 * * *"  # Daily: 09:00 local

    def __post_init__(self) -> None:
        if self.daily_max_posts < 0:
            raise ValueError("daily_max_posts must be >= 0")
        if self.min_delay_seconds < 0 or self.max_delay_seconds < self.min_delay_seconds:
            raise ValueError("delay range must satisfy 0 <= min <= max")
        if self.stop_poll_seconds <= 0:
            raise ValueError("stop_poll_seconds must be > 0")
