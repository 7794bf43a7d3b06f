"""The search loop: generate, execute, classify, and then shrink."""

import contextlib
import logging
import math
import time
from dataclasses import dataclass
from enum import Enum
from random import Random
from typing import Callable, Optional

from sortedcontainers import SortedList

from hypocheck.choices import ChoicesT, sort_key
from hypocheck.database import ExampleDatabase, NoDatabase
from hypocheck.errors import GenerationExhausted, StopTest
from hypocheck.settings import Settings
from hypocheck.shrinker import Shrinker
from hypocheck.statistics import Statistics
from hypocheck.testcase import Status, TestCase, TestResult

logger = logging.getLogger(__name__)

assert time.get_clock_info("perf_counter").monotonic, (
    "hypocheck relies on perf_counter being monotonic. This is guaranteed on "
    "CPython. Please open an issue if you hit this assertion."
)

# how many of the best-scoring trials we keep as starting points for targeting
TARGET_POOL_SIZE = 8


class Phase(Enum):
    REUSE = "reuse"
    GENERATE = "generate"
    TARGET = "target"
    SHRINK = "shrink"


class ExitReason(Enum):
    FOUND_FAILURE = "found a failing input"
    MAX_EXAMPLES = "ran max_examples valid trials"
    DEADLINE = "reached the generation deadline"
    TRIVIAL = "the property makes no draws, so one trial is enough"
    DISCARD_BUDGET = "discarded too many trials"
    FILTER_EXHAUSTED = "a filter could not find a valid value"


@dataclass(frozen=True)
class EngineResult:
    exit_reason: ExitReason
    failure: Optional[TestResult]
    # the first failing trial we saw, before shrinking
    original: Optional[TestResult]
    shrink_timed_out: bool
    best_score: Optional[float]
    valid_examples: int
    discarded_examples: int
    message: Optional[str] = None


class Engine:
    def __init__(
        self,
        test_function: Callable[[TestCase], None],
        *,
        settings: Optional[Settings] = None,
        database: Optional[ExampleDatabase] = None,
        database_key: Optional[bytes] = None,
        random: Optional[Random] = None,
        statistics: Optional[Statistics] = None,
    ) -> None:
        self.test_function = test_function
        self.settings = Settings() if settings is None else settings
        self.database = NoDatabase() if database is None else database
        self.database_key = database_key
        self.random = Random() if random is None else random
        self.statistics = Statistics() if statistics is None else statistics

        self.phase: Optional[Phase] = None
        self.calls = 0
        self.valid_examples = 0
        self.discarded_examples = 0
        self.exit_reason: Optional[ExitReason] = None
        self.message: Optional[str] = None
        self.test_is_trivial = False
        self._generation_deadline = math.inf

        self.failure: Optional[TestResult] = None
        self.original: Optional[TestResult] = None
        self.shrink_timed_out = False
        # valid trials which reported a target score, best first
        self.best_scoring: SortedList[TestResult] = SortedList(
            key=lambda r: (-r.target_score, sort_key(r.choices))
        )

    def _start_phase(self, phase: Phase) -> None:
        if phase is not self.phase:
            logger.debug("entering phase %s", phase.value)
            self.phase = phase

    def execute(self, tc: TestCase) -> TestResult:
        """Run the test function on a single test case, and classify it."""
        try:
            self.test_function(tc)
        except StopTest:
            pass
        except GenerationExhausted as e:
            # raised by an over-selective filter. While shrinking that only
            # rules out this candidate; otherwise it ends the run.
            if self.phase is not Phase.SHRINK:
                tc.freeze()
                self.exit_reason = ExitReason.FILTER_EXHAUSTED
                self.message = str(e)
                raise
            with contextlib.suppress(StopTest):
                tc.mark_invalid(str(e))
        tc.freeze()
        result = tc.as_result()

        self.calls += 1
        self.statistics.record(result, shrinking=self.phase is Phase.SHRINK)
        if self.phase is Phase.SHRINK:
            return result

        if result.status is Status.VALID:
            self.valid_examples += 1
            if not result.draws:
                self.test_is_trivial = True
            if result.target_score is not None:
                self.best_scoring.add(result)
                while len(self.best_scoring) > TARGET_POOL_SIZE:
                    self.best_scoring.pop()
        elif result.status is Status.INTERESTING:
            if self.failure is None:
                self.original = result
                self.failure = result
                # save the failure now, in case we're killed while shrinking
                self._save(result.choices)
        else:
            self.discarded_examples += 1
        return result

    def replay(self, choices: ChoicesT) -> TestResult:
        return self.execute(
            TestCase.for_choices(
                choices,
                max_size=self.settings.buffer_size,
                max_depth=self.settings.max_depth,
            )
        )

    def _save(self, choices: ChoicesT) -> None:
        if self.database_key is not None:
            self.database.save(self.database_key, choices)

    @property
    def best_score(self) -> Optional[float]:
        if not self.best_scoring:
            return None
        return self.best_scoring[0].target_score

    def should_keep_generating(self) -> bool:
        if self.failure is not None:
            self.exit_reason = ExitReason.FOUND_FAILURE
        elif self.test_is_trivial:
            self.exit_reason = ExitReason.TRIVIAL
        elif self.valid_examples >= self.settings.max_examples:
            self.exit_reason = ExitReason.MAX_EXAMPLES
        elif self.discarded_examples > self.settings.discard_budget:
            self.exit_reason = ExitReason.DISCARD_BUDGET
        elif time.perf_counter() > self._generation_deadline:
            self.exit_reason = ExitReason.DEADLINE
        return self.exit_reason is None

    def run(self) -> EngineResult:
        start = time.perf_counter()
        deadline = self.settings.deadline
        self._generation_deadline = math.inf if deadline is None else start + deadline
        try:
            self.reuse_existing_examples()
            self.generate_new_examples()
            if self.settings.targeting:
                self.optimise_targets()
        except GenerationExhausted:
            assert self.exit_reason is ExitReason.FILTER_EXHAUSTED
        # the loops above end as soon as we know the outcome; make sure the
        # reason is recorded even if they never ran.
        if self.exit_reason is None:
            self.should_keep_generating()
        if self.failure is not None:
            self.exit_reason = ExitReason.FOUND_FAILURE
            self.shrink()
        self.statistics.elapsed_time += time.perf_counter() - start

        assert self.exit_reason is not None
        if self.exit_reason is ExitReason.DISCARD_BUDGET and self.message is None:
            self.message = (
                f"Only {self.valid_examples} valid examples were generated, and "
                f"{self.discarded_examples} were discarded by assume(), reject(), "
                "or running out of draws"
            )
        return EngineResult(
            exit_reason=self.exit_reason,
            failure=self.failure,
            original=self.original,
            shrink_timed_out=self.shrink_timed_out,
            best_score=self.best_score,
            valid_examples=self.valid_examples,
            discarded_examples=self.discarded_examples,
            message=self.message,
        )

    def reuse_existing_examples(self) -> None:
        if self.database_key is None:
            return
        choices = self.database.fetch(self.database_key)
        if choices is None:
            return
        self._start_phase(Phase.REUSE)
        result = self.replay(choices)
        if result.status is Status.INTERESTING:
            logger.debug("stored failure still reproduces: %r", choices)
        else:
            logger.debug("stored failure no longer reproduces, deleting it")
            self.database.delete(self.database_key)

    def generate_new_examples(self) -> None:
        self._start_phase(Phase.GENERATE)
        # when targeting, leave half of the budget for hill climbing
        limit = self.settings.max_examples
        while self.should_keep_generating():
            if self.settings.targeting and self.best_scoring and (
                self.valid_examples >= limit // 2
            ):
                break
            self.generate_one()

    def generate_one(self) -> TestResult:
        return self.execute(
            TestCase.fresh(
                self.random,
                max_size=self.settings.buffer_size,
                max_depth=self.settings.max_depth,
            )
        )

    def optimise_targets(self) -> None:
        """Hill-climb on target scores, one draw at a time.

        For a random draw of the best-scoring trial we try a step up and a step
        down.  If either improves the score we keep going in that direction,
        doubling the step while it still helps and then halving it again.
        """
        if not self.best_scoring:
            return
        self._start_phase(Phase.TARGET)

        def adjust(i: int, step: int) -> bool:
            best = self.best_scoring[0]
            if i >= len(best.choices):
                return False
            attempt = list(best.choices)
            attempt[i] += step
            if attempt[i] < 0 or attempt[i] > best.draws[i].max_value:
                return False
            result = self.execute(
                TestCase.fresh(
                    self.random,
                    prefix=attempt,
                    max_size=self.settings.buffer_size,
                    max_depth=self.settings.max_depth,
                )
            )
            return (
                result.status is Status.VALID
                and result.target_score is not None
                and result.target_score > best.target_score
            )

        while self.should_keep_generating():
            best = self.best_scoring[0]
            movable = [i for i, d in enumerate(best.draws) if d.max_value > 0]
            if not movable:
                # every draw is forced, so there is nothing to climb
                self.generate_one()
                continue
            i = self.random.choice(movable)
            sign = 0
            for step in (1, -1):
                if not self.should_keep_generating():
                    return
                if adjust(i, step):
                    sign = step
                    break
            if sign == 0:
                continue
            k = 1
            while self.should_keep_generating() and adjust(i, sign * k):
                k *= 2
            while k > 0:
                while self.should_keep_generating() and adjust(i, sign * k):
                    pass
                k //= 2

    def shrink(self) -> None:
        assert self.failure is not None
        self._start_phase(Phase.SHRINK)
        origin = self.failure.interesting_origin

        def predicate(result: TestResult) -> bool:
            return (
                result.status is Status.INTERESTING
                and result.interesting_origin == origin
            )

        shrinker = Shrinker(
            self.replay,
            self.failure,
            predicate,
            max_shrinks=self.settings.max_shrinks,
            timeout=self.settings.shrink_timeout,
            statistics=self.statistics,
        )
        self.failure = shrinker.shrink()
        self.shrink_timed_out = shrinker.timed_out
        # overwrite the unshrunk failure we saved earlier
        self._save(self.failure.choices)
