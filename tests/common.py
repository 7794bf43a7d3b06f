import inspect
from collections.abc import Sequence
from pathlib import Path
from random import Random
from typing import Any, Callable, Optional

from hypocheck.data import Possibility
from hypocheck.engine import Engine
from hypocheck.errors import StopTest
from hypocheck.settings import Settings
from hypocheck.testcase import TestCase, TestResult

# no database, so tests never read or write .hypocheck/ in the working directory
SETTINGS = Settings(database=None)


def replay(possibility: Possibility, choices: Sequence[int]) -> tuple[TestCase, Any]:
    """Produce from ``possibility`` on exactly ``choices``.

    Returns the frozen test case, and the value (or None if the trial ended
    before a value was produced).
    """
    tc = TestCase.for_choices(choices)
    value = None
    try:
        value = possibility.produce(tc)
    except StopTest:
        pass
    tc.freeze()
    return (tc, value)


def fresh(
    possibility: Possibility, random: Random, *, max_size: Optional[int] = None
) -> tuple[TestCase, Any]:
    tc = (
        TestCase.fresh(random)
        if max_size is None
        else TestCase.fresh(random, max_size=max_size)
    )
    value = None
    try:
        value = possibility.produce(tc)
    except StopTest:
        pass
    tc.freeze()
    return (tc, value)


def interesting_if(
    condition: Callable[[TestCase], bool], origin: str = "interesting"
) -> Callable[[TestCase], None]:
    """A test function for the engine, which fails whenever ``condition`` does."""

    def test_function(tc: TestCase) -> None:
        if condition(tc):
            tc.mark_interesting(origin)

    return test_function


def run_engine(
    test_function: Callable[[TestCase], None],
    *,
    seed: int = 0,
    settings: Settings = SETTINGS,
    **kwargs: Any,
) -> Engine:
    engine = Engine(test_function, settings=settings, random=Random(seed), **kwargs)
    engine.result = engine.run()
    return engine


def replay_result(
    test_function: Callable[[TestCase], None], choices: Sequence[int]
) -> TestResult:
    return Engine(test_function, settings=SETTINGS).replay(tuple(choices))


def write_module(path: Path, code: str) -> Path:
    path.write_text(
        "from hypocheck import *\n\n" + inspect.cleandoc(code) + "\n"
    )
    return path
