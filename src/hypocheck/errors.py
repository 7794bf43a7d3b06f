"""Exceptions raised by hypocheck.

Only `UsageError`, `GenerationExhausted` and `PropertyFailure` are ever seen by
users.  The rest are control flow between the choice source, the test case and
the engine, and never escape a check run.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from hypocheck.choices import OverrunReason
    from hypocheck.report import Report


class HypocheckException(Exception):
    """Base class for all exceptions defined by hypocheck."""


class UsageError(HypocheckException):
    """The API was used incorrectly: bad arguments, bad configuration, or a
    hook called outside the test case it belongs to.  Never retried."""


class Frozen(UsageError):
    """A hook or draw was attempted on a test case which has already finished."""


class GenerationExhausted(HypocheckException):
    """We could not generate enough valid inputs.

    Raised when a filter exceeds its retry ceiling, or when the run discards
    more trials than the configured budget allows.  This is distinct from a
    failing property: nothing is known to be wrong with the code under test.
    """

    def __init__(self, message: str, *, report: Optional["Report"] = None) -> None:
        super().__init__(message)
        self.report = report


class PropertyFailure(HypocheckException, AssertionError):
    """A property was falsified.  The attached report holds the minimal
    counterexample and the choice sequence which reproduces it."""

    def __init__(self, message: str, *, report: "Report") -> None:
        super().__init__(message)
        self.report = report


class DataExhausted(HypocheckException):
    """The choice source cannot make another draw.

    This is either because the replay buffer ran out, or because the per-trial
    draw budget was used up.  The test case turns it into an overrun.
    """

    def __init__(self, reason: "OverrunReason") -> None:
        super().__init__(reason.value)
        self.reason = reason


class InvalidChoice(HypocheckException):
    """A replayed value is larger than the bound of the draw reading it."""


class StopTest(BaseException):
    """Aborts the current trial once its status has been decided.

    This inherits from BaseException so that `except Exception:` in user code
    does not swallow it.
    """
