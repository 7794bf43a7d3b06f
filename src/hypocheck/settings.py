import dataclasses
from dataclasses import dataclass
from typing import Any, Optional

from hypocheck.choices import BUFFER_SIZE
from hypocheck.database import DatabaseT
from hypocheck.errors import UsageError
from hypocheck.shrinker import SHRINK_TIMEOUT
from hypocheck.testcase import DEFAULT_MAX_DEPTH


def _check_optional_positive(name: str, value: Any, kind: type = int) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, (kind, int)) or value <= 0:
        raise UsageError(f"{name}={value!r} must be a positive {kind.__name__}")


@dataclass(frozen=True)
class Settings:
    """Configuration for a check run.

    max_examples: the number of valid trials to run before declaring success.
    max_discards: how many invalid or overrun trials to tolerate before giving
        up with GenerationExhausted.  Defaults to ten times max_examples.
    buffer_size: the maximum number of draws in a single trial.
    max_depth: the maximum nesting of recursive and deferred possibilities.
    deadline: wall-clock seconds to spend generating, or None for no limit.
        Reaching it ends generation but keeps any failure already found.
    shrink_timeout: wall-clock seconds to spend shrinking a failure, after
        which the best result so far is reported.
    max_shrinks: stop shrinking after this many improvements.
    database: where failures are stored.  "default" is a directory database
        under .hypocheck/, None disables storage.
    derandomize: derive the random seed from the property, so every run
        explores the same inputs.
    targeting: hill-climb on scores passed to tc.target().
    """

    max_examples: int = 100
    max_discards: Optional[int] = None
    buffer_size: int = BUFFER_SIZE
    max_depth: int = DEFAULT_MAX_DEPTH
    deadline: Optional[float] = None
    shrink_timeout: Optional[float] = SHRINK_TIMEOUT
    max_shrinks: Optional[int] = None
    database: DatabaseT = "default"
    derandomize: bool = False
    targeting: bool = True

    def __post_init__(self) -> None:
        for name in ("max_examples", "buffer_size", "max_depth"):
            value = getattr(self, name)
            if value is None:
                raise UsageError(f"{name} must not be None")
            _check_optional_positive(name, value)
        _check_optional_positive("max_discards", self.max_discards)
        _check_optional_positive("max_shrinks", self.max_shrinks)
        _check_optional_positive("deadline", self.deadline, float)
        _check_optional_positive("shrink_timeout", self.shrink_timeout, float)

    @property
    def discard_budget(self) -> int:
        if self.max_discards is None:
            return 10 * self.max_examples
        return self.max_discards

    def replace(self, **changes: Any) -> "Settings":
        try:
            return dataclasses.replace(self, **changes)
        except TypeError as e:
            raise UsageError(str(e)) from None
