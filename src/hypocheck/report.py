from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from hypocheck.choices import ChoicesT
from hypocheck.errors import GenerationExhausted, PropertyFailure
from hypocheck.testcase import Status


class ReportStatus(Enum):
    PASSED = "passed"
    FAILED = "failed"
    GAVE_UP = "gave_up"


@dataclass(frozen=True)
class Example:
    """The arguments produced by replaying one choice sequence, and what
    happened when the property was called with them."""

    status: Status
    choices: ChoicesT
    arguments: dict[str, Any]
    representation: str
    traceback: Optional[str] = None
    events: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Report:
    name: str
    database_key: str
    status: ReportStatus
    seed: int
    # the minimal failing example, and the one we first found
    counterexample: Optional[Example] = None
    original: Optional[Example] = None
    # True if shrinking stopped at its time or shrink budget, in which case
    # the counterexample may not be minimal.
    shrink_timed_out: bool = False
    best_score: Optional[float] = None
    reason: Optional[str] = None
    statistics: dict[str, Any] = field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status is ReportStatus.PASSED

    def __str__(self) -> str:
        if self.status is ReportStatus.PASSED:
            stats = self.statistics
            return (
                f"{self.name} passed {stats.get('passes', 0)} examples "
                f"({stats.get('rejections', 0)} rejected, "
                f"{stats.get('overruns', 0)} overrun)"
            )
        if self.status is ReportStatus.GAVE_UP:
            return f"{self.name} gave up: {self.reason}"

        assert self.counterexample is not None
        lines = [f"{self.name} failed with {self.counterexample.representation}"]
        if self.shrink_timed_out:
            lines.append(
                "    (shrinking stopped early; this may not be the minimal example)"
            )
        lines.append(f"    reproduce with choices={list(self.counterexample.choices)}")
        if self.original is not None and self.original.choices != (
            self.counterexample.choices
        ):
            lines.append(f"    originally found as {self.original.representation}")
        if self.counterexample.traceback:
            lines.append(self.counterexample.traceback.rstrip())
        return "\n".join(lines)

    def raise_for_status(self) -> None:
        if self.status is ReportStatus.FAILED:
            raise PropertyFailure(str(self), report=self)
        if self.status is ReportStatus.GAVE_UP:
            raise GenerationExhausted(str(self), report=self)
