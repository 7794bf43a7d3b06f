import logging
import math
import time
import traceback as tb
from collections.abc import Generator, Hashable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import IntEnum
from random import Random
from typing import TYPE_CHECKING, Any, Callable, NoReturn, Optional, TypeVar

from hypocheck.choices import (
    BUFFER_SIZE,
    ChoicesT,
    ChoiceSource,
    Draw,
    OverrunReason,
)
from hypocheck.errors import (
    DataExhausted,
    Frozen,
    InvalidChoice,
    StopTest,
    UsageError,
)

if TYPE_CHECKING:
    from hypocheck.data import Possibility

T = TypeVar("T")

logger = logging.getLogger(__name__)

# deep enough for any reasonable recursive structure, shallow enough to stay
# well clear of the interpreter's own recursion limit.
DEFAULT_MAX_DEPTH = 64

# the interesting origin of a property which returned False rather than raising.
FALSIFIED = "falsified"


class Status(IntEnum):
    IN_PROGRESS = 0
    OVERRUN = 1
    INVALID = 2
    VALID = 3
    INTERESTING = 4

    def __repr__(self) -> str:
        return f"Status.{self.name}"


@dataclass(frozen=True)
class TestResult:
    """An immutable snapshot of a finished trial."""

    __test__ = False

    status: Status
    draws: tuple[Draw, ...]
    status_reason: Optional[str] = None
    overrun_reason: Optional[OverrunReason] = None
    interesting_origin: Optional[Hashable] = None
    traceback: Optional[str] = None
    target_score: Optional[float] = None
    events: tuple[tuple[str, str], ...] = ()
    filter_retries: int = 0
    timing: dict[str, float] = field(default_factory=dict, compare=False)

    @property
    def choices(self) -> ChoicesT:
        return tuple(d.value for d in self.draws)


class TestCase:
    """The context for a single trial.

    A test case owns one choice source, and is passed explicitly to every
    possibility and to the property itself.  The hooks (`assume`, `reject`,
    `target`, `produce` and `event`) are methods here; calling any of them once
    the trial has finished raises `Frozen`.
    """

    __test__ = False

    def __init__(
        self,
        source: ChoiceSource,
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.source = source
        self.max_depth = max_depth

        self.status = Status.IN_PROGRESS
        self.status_reason: Optional[str] = None
        self.overrun_reason: Optional[OverrunReason] = None
        self.interesting_origin: Optional[Hashable] = None
        self.traceback: Optional[str] = None
        self.target_score: Optional[float] = None
        self.events: list[tuple[str, str]] = []
        # incremented every time a filter throws away a value and tries again
        self.filter_retries = 0
        self.depth = 0
        self.timing: dict[str, float] = {}
        self.start_time = time.perf_counter()

    @classmethod
    def for_choices(
        cls,
        choices: Sequence[int],
        *,
        max_size: Optional[int] = None,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> "TestCase":
        """A test case which replays exactly ``choices``, and overruns if it
        tries to draw past their end."""
        return cls(
            ChoiceSource(
                choices,
                random=None,
                max_size=len(choices) if max_size is None else max_size,
            ),
            max_depth=max_depth,
        )

    @classmethod
    def fresh(
        cls,
        random: Random,
        *,
        prefix: Sequence[int] = (),
        max_size: int = BUFFER_SIZE,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> "TestCase":
        return cls(
            ChoiceSource(prefix, random=random, max_size=max_size),
            max_depth=max_depth,
        )

    def __repr__(self) -> str:
        return f"TestCase(status={self.status!r}, choices={self.choices!r})"

    @property
    def choices(self) -> ChoicesT:
        return self.source.choices

    @property
    def frozen(self) -> bool:
        return self.source.frozen

    def _check_active(self, name: str) -> None:
        if self.frozen or self.status is not Status.IN_PROGRESS:
            raise Frozen(
                f"Cannot call {name}() on a test case which has already finished "
                f"(status={self.status.name})"
            )

    # draws

    def draw(
        self, max_value: int, *, sample: Optional[Callable[[Random], int]] = None
    ) -> int:
        """Draw an integer in ``[0, max_value]``.  This is the primitive which
        every possibility is ultimately built on."""
        self._check_active("draw")
        try:
            return self.source.draw(max_value, sample=sample)
        except DataExhausted as e:
            self.mark_overrun(e.reason)
        except InvalidChoice as e:
            self.mark_invalid(str(e))

    def weighted(self, p: float) -> bool:
        self._check_active("weighted")
        try:
            return self.source.weighted(p)
        except DataExhausted as e:
            self.mark_overrun(e.reason)
        except InvalidChoice as e:
            self.mark_invalid(str(e))

    @contextmanager
    def descend(self) -> Generator[None, None, None]:
        """Track one level of recursion in a recursive or deferred possibility."""
        self.depth += 1
        try:
            if self.depth > self.max_depth:
                self.mark_overrun(OverrunReason.MAX_DEPTH)
            yield
        finally:
            self.depth -= 1

    # hooks

    def assume(self, condition: object) -> None:
        self._check_active("assume")
        if not condition:
            self.mark_invalid("failed assumption")

    def reject(self, reason: str = "rejected") -> NoReturn:
        self._check_active("reject")
        self.mark_invalid(reason)

    def target(self, score: float) -> None:
        self._check_active("target")
        score = float(score)
        if not math.isfinite(score):
            raise UsageError(f"target score must be finite, got {score!r}")
        if self.target_score is not None:
            logger.warning(
                "target() was called more than once in a single test case; "
                "overwriting the previous score %r with %r",
                self.target_score,
                score,
            )
        self.target_score = score

    def produce(self, possibility: "Possibility[T]") -> T:
        self._check_active("produce")
        return possibility.produce(self)

    def event(self, label: str, value: Any = "") -> None:
        self._check_active("event")
        self.events.append((label, value if isinstance(value, str) else repr(value)))

    # status transitions. Each of these ends the trial.

    def mark_invalid(self, reason: str) -> NoReturn:
        self._conclude(Status.INVALID, reason)

    def mark_overrun(self, reason: OverrunReason) -> NoReturn:
        self._check_active("mark_overrun")
        self.overrun_reason = reason
        self._conclude(Status.OVERRUN, reason.value)

    def mark_interesting(
        self, origin: Hashable, *, error: Optional[BaseException] = None
    ) -> NoReturn:
        self._check_active("mark_interesting")
        self.interesting_origin = origin
        if error is not None:
            self.traceback = "".join(
                tb.format_exception(type(error), error, error.__traceback__)
            )
        self._conclude(Status.INTERESTING, f"failed: {origin}")

    def _conclude(self, status: Status, reason: Optional[str]) -> NoReturn:
        self._check_active(f"mark_{status.name.lower()}")
        self.status = status
        self.status_reason = reason
        raise StopTest

    def freeze(self) -> None:
        """End the trial.  A test case still in progress at this point ran to
        completion, so it is valid."""
        if self.frozen:
            return
        if self.status is Status.IN_PROGRESS:
            self.status = Status.VALID
        self.timing.setdefault("total", time.perf_counter() - self.start_time)
        self.source.freeze()

    def as_result(self) -> TestResult:
        assert self.frozen, "call freeze() before as_result()"
        return TestResult(
            status=self.status,
            draws=tuple(self.source.draws),
            status_reason=self.status_reason,
            overrun_reason=self.overrun_reason,
            interesting_origin=self.interesting_origin,
            traceback=self.traceback,
            target_score=self.target_score,
            events=tuple(self.events),
            filter_retries=self.filter_retries,
            timing=dict(self.timing),
        )
