"""Retry schedule for paged downloads.

A RetryPolicy is an ordered list of wait durations. Entry i is the wait
before the retry that follows the i-th consecutive failure; once every
entry has been used, the next failure is fatal.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Tuple


DEFAULT_RETRY_SCHEDULE: Tuple[float, ...] = (30, 30, 300, 300, 3000, 3000)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule.

    Attributes:
        schedule: Wait durations in seconds, one per allowed retry.
    """

    schedule: Tuple[float, ...] = DEFAULT_RETRY_SCHEDULE

    def __post_init__(self) -> None:
        for delay in self.schedule:
            if not math.isfinite(delay) or delay < 0:
                raise ValueError(
                    f"Retry delays must be finite and non-negative, got {delay}"
                )

    @classmethod
    def from_delays(cls, delays: Iterable[float]) -> "RetryPolicy":
        return cls(schedule=tuple(float(delay) for delay in delays))

    @classmethod
    def parse(cls, value: str) -> "RetryPolicy":
        """Parse a comma-separated list of seconds, e.g. "30,30,300".

        An empty string yields a policy that never retries.

        Raises:
            ValueError: If an entry is not a number.
        """
        parts = [part.strip() for part in value.split(",") if part.strip()]
        return cls.from_delays(float(part) for part in parts)

    @property
    def max_retries(self) -> int:
        return len(self.schedule)

    def can_retry(self, consecutive_failures: int) -> bool:
        """Whether another retry is allowed after this many consecutive failures.

        Args:
            consecutive_failures: Failures since the last success, not
                counting the one just observed.
        """
        return consecutive_failures < len(self.schedule)

    def delay_for(self, consecutive_failures: int) -> float:
        """Seconds to wait before the next retry.

        Raises:
            IndexError: If the schedule is exhausted.
        """
        return self.schedule[consecutive_failures]
