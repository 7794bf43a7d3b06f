"""Minimise failing choice sequences.

The shrinker knows nothing about the values a sequence produces.  It proposes
edited sequences, replays them through the test function, and keeps any
candidate which still satisfies the predicate and is strictly smaller under
`sort_key`.  Each pass is a different family of edits; we run all of them in
turn until a full round makes no progress.
"""

import logging
import math
import time
from collections.abc import Sequence
from typing import Callable, Optional

from hypocheck.choices import ChoicesT, sort_key
from hypocheck.statistics import Statistics
from hypocheck.testcase import TestResult

logger = logging.getLogger(__name__)

# 5 minutes
SHRINK_TIMEOUT = 5 * 60


class HitShrinkTimeoutError(Exception):
    pass


class ShrinkBudgetExhausted(Exception):
    pass


def bin_search_down(lo: int, hi: int, f: Callable[[int], bool]) -> int:
    """Return the smallest n in ``[lo, hi]`` with f(n), given that f(hi) holds.

    f is assumed to be monotonic; if it is not, we still return some n with
    f(n), just not necessarily the smallest.
    """
    if f(lo):
        return lo
    while lo + 1 < hi:
        mid = lo + (hi - lo) // 2
        if f(mid):
            hi = mid
        else:
            lo = mid
    return hi


class Shrinker:
    def __init__(
        self,
        test_function: Callable[[ChoicesT], TestResult],
        initial: TestResult,
        predicate: Callable[[TestResult], bool],
        *,
        max_shrinks: Optional[int] = None,
        timeout: Optional[float] = SHRINK_TIMEOUT,
        statistics: Optional[Statistics] = None,
    ) -> None:
        assert predicate(initial), "the initial result must satisfy the predicate"
        self.test_function = test_function
        self.predicate = predicate
        self.current = initial
        self.max_shrinks = max_shrinks
        self.timeout = math.inf if timeout is None else timeout
        self.statistics = statistics

        self.cache: dict[ChoicesT, TestResult] = {initial.choices: initial}
        self.calls = 0
        self.shrinks = 0
        self.passes_run = 0
        # set if we stopped at the time or shrink budget rather than a fixpoint
        self.timed_out = False
        self._stop_at = math.inf

        self.passes: list[Callable[[], None]] = [
            self.remove_spans,
            self.zero_spans,
            self.reduce_draws,
            self.sort_spans,
            self.swap_draws,
            self.redistribute_draws,
        ]

    @property
    def choices(self) -> ChoicesT:
        return self.current.choices

    def shrink(self) -> TestResult:
        self._stop_at = time.perf_counter() + self.timeout
        try:
            previous = None
            while previous != self.choices:
                previous = self.choices
                for shrink_pass in self.passes:
                    self.passes_run += 1
                    if self.statistics is not None:
                        self.statistics.shrink_passes += 1
                    shrink_pass()
        except (HitShrinkTimeoutError, ShrinkBudgetExhausted) as e:
            logger.debug("stopped shrinking early: %r", e)
            self.timed_out = True
        logger.debug(
            "shrunk to %d draws after %d calls and %d improvements",
            len(self.choices),
            self.calls,
            self.shrinks,
        )
        return self.current

    def consider(self, choices: Sequence[int]) -> bool:
        """Replay ``choices``, keeping the result if it is an improvement.

        Returns whether the candidate satisfies the predicate, which is what
        the searches in the passes below need to know.
        """
        choices = tuple(choices)
        if choices == self.choices:
            return True
        if sort_key(choices) > sort_key(self.choices):
            return False
        if self._out_of_bounds(choices):
            return False

        if choices in self.cache:
            result = self.cache[choices]
        else:
            if time.perf_counter() > self._stop_at:
                raise HitShrinkTimeoutError(f"after {self.timeout} seconds")
            result = self.test_function(choices)
            self.calls += 1
            self.cache[choices] = result

        if not self.predicate(result):
            return False
        if sort_key(result.choices) < sort_key(self.choices):
            self.current = result
            self.shrinks += 1
            if self.statistics is not None:
                self.statistics.shrinks += 1
            if self.max_shrinks is not None and self.shrinks >= self.max_shrinks:
                raise ShrinkBudgetExhausted(f"after {self.shrinks} shrinks")
        return True

    def _out_of_bounds(self, choices: ChoicesT) -> bool:
        # Up to the first difference a candidate replays exactly like the
        # current best, so the draw at that position has the same bound.
        current = self.current.draws
        for i, (a, b) in enumerate(zip(choices, self.choices)):
            if a != b:
                return a > current[i].max_value
        return False

    def replace(self, values: dict[int, int]) -> bool:
        attempt = list(self.choices)
        for i, v in values.items():
            if i >= len(attempt) or v < 0:
                return False
            attempt[i] = v
        return self.consider(attempt)

    # shrink passes

    def remove_spans(self) -> None:
        # Delete runs of k draws, from the end backwards. If that alone fails,
        # the draw just before often holds a count (e.g. a list size) of the
        # deleted elements, so try decrementing it as well.
        k = 8
        while k > 0:
            i = len(self.choices) - k
            while i >= 0:
                if i + k > len(self.choices):
                    i -= 1
                    continue
                attempt = list(self.choices[:i] + self.choices[i + k :])
                if self.consider(attempt):
                    continue
                if i > 0 and attempt[i - 1] > 0:
                    attempt[i - 1] -= 1
                    if self.consider(attempt):
                        continue
                i -= 1
            k //= 2

    def zero_spans(self) -> None:
        k = 8
        while k > 1:
            i = len(self.choices) - k
            while i >= 0:
                if self.replace({j: 0 for j in range(i, i + k)}):
                    i -= k
                else:
                    i -= 1
            k //= 2

    def reduce_draws(self) -> None:
        i = len(self.choices) - 1
        while i >= 0:
            if i < len(self.choices):
                bin_search_down(0, self.choices[i], lambda v: self.replace({i: v}))
            i -= 1

    def sort_spans(self) -> None:
        k = 8
        while k > 1:
            for i in range(len(self.choices) - k, -1, -1):
                if i + k > len(self.choices):
                    continue
                choices = self.choices
                self.consider(
                    choices[:i] + tuple(sorted(choices[i : i + k])) + choices[i + k :]
                )
            k //= 2

    def swap_draws(self) -> None:
        for k in (2, 1):
            for i in range(len(self.choices) - 1 - k, -1, -1):
                j = i + k
                if j < len(self.choices) and self.choices[i] > self.choices[j]:
                    self.replace({i: self.choices[j], j: self.choices[i]})

    def redistribute_draws(self) -> None:
        # move value from an earlier draw to a later one, keeping the sum fixed
        for k in (2, 1):
            for i in range(len(self.choices) - 1 - k, -1, -1):
                j = i + k
                if j >= len(self.choices) or self.choices[i] == 0:
                    continue
                previous_i = self.choices[i]
                previous_j = self.choices[j]
                bin_search_down(
                    0,
                    previous_i,
                    lambda v: self.replace(
                        {i: v, j: previous_j + (previous_i - v)}
                    ),
                )
