"""Passive counters for a check run.

Statistics observe the engine and shrinker but never influence them; a run
with or without a `Statistics` object behaves identically.
"""

import math
from collections import Counter
from dataclasses import dataclass
from typing import Any

from hypocheck.testcase import Status, TestResult


@dataclass
class OnlineMoments:
    """Running mean and variance, using Welford's algorithm."""

    count: int = 0
    mean: float = 0.0
    _m2: float = 0.0

    def add(self, x: float) -> None:
        self.count += 1
        delta = x - self.mean
        self.mean += delta / self.count
        self._m2 += delta * (x - self.mean)

    @property
    def variance(self) -> float:
        if self.count < 2:
            return 0.0
        return self._m2 / (self.count - 1)

    @property
    def stdev(self) -> float:
        return math.sqrt(self.variance)

    def as_dict(self) -> dict[str, float]:
        return {"mean": self.mean, "variance": self.variance}


class StatusCounts(dict):
    """A dict of status -> count, with every status present."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        for status in Status:
            if status is not Status.IN_PROGRESS:
                self.setdefault(status, 0)

    def __repr__(self) -> str:
        counts = ", ".join(f"{status.name}: {n}" for status, n in self.items())
        return f"StatusCounts({counts})"


class Statistics:
    def __init__(self) -> None:
        self.status_counts = StatusCounts()
        self.events: Counter[str] = Counter()
        self.filter_retries = 0
        # property calls made while shrinking, and improvements accepted
        self.shrink_calls = 0
        self.shrinks = 0
        self.shrink_passes = 0
        self.generation_time = OnlineMoments()
        self.runtime = OnlineMoments()
        self.elapsed_time = 0.0

    def __repr__(self) -> str:
        return f"Statistics({self.summary()!r})"

    @property
    def attempts(self) -> int:
        return sum(self.status_counts.values())

    @property
    def invocations(self) -> int:
        # every attempt which got as far as calling the property function
        return self.attempts - self.status_counts[Status.OVERRUN]

    def record(self, result: TestResult, *, shrinking: bool = False) -> None:
        self.status_counts[result.status] += 1
        self.filter_retries += result.filter_retries
        for label, value in result.events:
            self.events[label if value == "" else f"{label}: {value}"] += 1
        if "generate" in result.timing:
            self.generation_time.add(result.timing["generate"])
        if "execute" in result.timing:
            self.runtime.add(result.timing["execute"])
        if shrinking:
            self.shrink_calls += 1

    def summary(self) -> dict[str, Any]:
        return {
            "attempts": self.attempts,
            "invocations": self.invocations,
            "passes": self.status_counts[Status.VALID],
            "rejections": self.status_counts[Status.INVALID],
            "overruns": self.status_counts[Status.OVERRUN],
            "failures": self.status_counts[Status.INTERESTING],
            "filter_retries": self.filter_retries,
            "shrinks": self.shrinks,
            "shrink_calls": self.shrink_calls,
            "shrink_passes": self.shrink_passes,
            "events": dict(self.events),
            "generation_time": self.generation_time.as_dict(),
            "runtime": self.runtime.as_dict(),
            "elapsed_time": self.elapsed_time,
        }
