"""Declaring properties, and running them."""

import inspect
import time
from base64 import b64encode
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from functools import wraps
from random import Random
from typing import Any, Callable, Optional

from hypothesis.internal.escalation import InterestingOrigin
from hypothesis.internal.reflection import get_pretty_function_description

from hypocheck.data import Possibility
from hypocheck.database import property_key, resolve_database
from hypocheck.engine import Engine, EngineResult, ExitReason
from hypocheck.errors import GenerationExhausted, StopTest, UsageError
from hypocheck.report import Example, Report, ReportStatus
from hypocheck.settings import Settings
from hypocheck.statistics import Statistics
from hypocheck.testcase import FALSIFIED, TestCase

# a property parameter with this name receives the test case, for the hooks
TEST_CASE_PARAMETER = "tc"


def _format_arguments(arguments: dict[str, Any]) -> str:
    return ", ".join(f"{k}={v!r}" for k, v in arguments.items())


@contextmanager
def _failures_are_interesting(tc: TestCase) -> Generator[None, None, None]:
    """Any error from user code, whether it produces arguments or checks them,
    fails the test case."""
    try:
        yield
    except (StopTest, UsageError, GenerationExhausted):
        raise
    except Exception as e:
        tc.mark_interesting(InterestingOrigin.from_exception(e), error=e)


class Property:
    """A predicate over named arguments, each produced by a possibility.

    The property fails if the function raises, or returns ``False``.  Any other
    return value, including None, is a pass.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        *,
        name: Optional[str] = None,
        settings: Optional[Settings] = None,
        **possibilities: Possibility,
    ) -> None:
        if not callable(fn):
            raise UsageError(f"{fn!r} is not callable")
        if TEST_CASE_PARAMETER in possibilities:
            raise UsageError(
                f"{TEST_CASE_PARAMETER!r} is reserved for the test case, and "
                "cannot be bound to a possibility"
            )
        for arg, possibility in possibilities.items():
            if not isinstance(possibility, Possibility):
                raise UsageError(f"{arg}={possibility!r} must be a Possibility")

        parameters = inspect.signature(fn).parameters
        missing = set(possibilities) - set(parameters)
        if missing and not any(
            p.kind is inspect.Parameter.VAR_KEYWORD for p in parameters.values()
        ):
            raise UsageError(
                f"{get_pretty_function_description(fn)} has no parameter(s) "
                f"named {', '.join(sorted(missing))}"
            )

        self.fn = fn
        self.possibilities = possibilities
        self.settings = Settings() if settings is None else settings
        self.name = name or getattr(fn, "__qualname__", None) or (
            get_pretty_function_description(fn)
        )
        self.database_key = property_key(fn, name)
        self.wants_test_case = TEST_CASE_PARAMETER in parameters

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.possibilities.items())
        return f"Property({self.name}, {args})"

    def _execute(self, tc: TestCase, *, record: Optional[dict] = None) -> None:
        start = time.perf_counter()
        with _failures_are_interesting(tc):
            arguments = {
                name: possibility.produce(tc)
                for name, possibility in self.possibilities.items()
            }
        tc.timing["generate"] = time.perf_counter() - start
        if record is not None:
            # repr before calling, in case the property mutates its arguments
            record["arguments"] = dict(arguments)
            record["representation"] = _format_arguments(arguments)

        kwargs = dict(arguments)
        if self.wants_test_case:
            kwargs[TEST_CASE_PARAMETER] = tc
        start = time.perf_counter()
        try:
            with _failures_are_interesting(tc):
                result = self.fn(**kwargs)
        finally:
            tc.timing["execute"] = time.perf_counter() - start
        if result is False:
            tc.mark_interesting(FALSIFIED)

    def replay(
        self, choices: Sequence[int], *, settings: Optional[Settings] = None
    ) -> Example:
        """Run the property once on a literal choice sequence."""
        settings = self.settings if settings is None else settings
        tc = TestCase.for_choices(
            choices, max_size=settings.buffer_size, max_depth=settings.max_depth
        )
        record: dict[str, Any] = {"arguments": {}, "representation": ""}
        try:
            self._execute(tc, record=record)
        except StopTest:
            pass
        tc.freeze()
        return Example(
            status=tc.status,
            choices=tc.choices,
            arguments=record["arguments"],
            representation=record["representation"],
            traceback=tc.traceback,
            events=tuple(tc.events),
        )

    def _seed(self, seed: Optional[int], settings: Settings) -> int:
        if seed is not None:
            return seed
        if settings.derandomize:
            return int.from_bytes(self.database_key[:8], "big")
        return Random().getrandbits(64)

    def check(
        self, settings: Optional[Settings] = None, *, seed: Optional[int] = None
    ) -> Report:
        """Search for a counterexample, and return a report of the outcome."""
        settings = self.settings if settings is None else settings
        seed = self._seed(seed, settings)
        statistics = Statistics()
        engine = Engine(
            self._execute,
            settings=settings,
            database=resolve_database(settings.database),
            database_key=self.database_key,
            random=Random(seed),
            statistics=statistics,
        )
        return self._report(
            engine.run(), seed=seed, settings=settings, statistics=statistics
        )

    def _report(
        self,
        result: EngineResult,
        *,
        seed: int,
        settings: Settings,
        statistics: Statistics,
    ) -> Report:
        counterexample = original = None
        if result.failure is not None:
            status = ReportStatus.FAILED
            counterexample = self.replay(result.failure.choices, settings=settings)
            assert result.original is not None
            original = self.replay(result.original.choices, settings=settings)
        elif result.exit_reason in (
            ExitReason.DISCARD_BUDGET,
            ExitReason.FILTER_EXHAUSTED,
        ):
            status = ReportStatus.GAVE_UP
        else:
            status = ReportStatus.PASSED
        return Report(
            name=self.name,
            database_key=b64encode(self.database_key).decode(),
            status=status,
            seed=seed,
            counterexample=counterexample,
            original=original,
            shrink_timed_out=result.shrink_timed_out,
            best_score=result.best_score,
            reason=result.message or result.exit_reason.value,
            statistics=statistics.summary(),
        )


def check(
    fn: Callable[..., Any],
    *,
    settings: Optional[Settings] = None,
    seed: Optional[int] = None,
    **possibilities: Possibility,
) -> Report:
    return Property(fn, settings=settings, **possibilities).check(seed=seed)


def forall(
    *, settings: Optional[Settings] = None, **possibilities: Possibility
) -> Callable[[Callable[..., Any]], Callable[[], None]]:
    """Declare a property.

    The decorated function becomes a zero-argument test, which any test
    runner can call: it searches for a counterexample and raises
    `PropertyFailure` if one is found.  The `Property` itself is available
    as the ``.hypocheck`` attribute.
    """

    def accept(fn: Callable[..., Any]) -> Callable[[], None]:
        prop = Property(fn, settings=settings, **possibilities)

        @wraps(fn)
        def run_property() -> None:
            prop.check().raise_for_status()

        # hide the property's own parameters from e.g. pytest's fixture lookup
        run_property.__signature__ = inspect.Signature()  # type: ignore
        run_property.hypocheck = prop  # type: ignore
        return run_property

    return accept
