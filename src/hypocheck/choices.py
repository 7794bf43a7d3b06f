from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from random import Random
from typing import TYPE_CHECKING, Callable, Optional

from hypocheck.errors import DataExhausted, Frozen, InvalidChoice, UsageError

if TYPE_CHECKING:
    from typing import TypeAlias

# a choice sequence as stored and replayed: just the drawn values, in order.
ChoicesT: "TypeAlias" = tuple[int, ...]

# the largest bound a single draw accepts. Wider ranges are built from several
# draws by the possibilities which need them.
MAX_DRAW = 2**64 - 1
# default cap on the number of draws in a single trial.
BUFFER_SIZE = 8 * 1024


class OverrunReason(Enum):
    DRAW_BUDGET = "draw budget exhausted"
    REPLAY_EXHAUSTED = "replay buffer exhausted"
    MAX_DEPTH = "maximum recursion depth exceeded"


@dataclass(frozen=True)
class Draw:
    value: int
    max_value: int
    index: int


def sort_key(choices: Sequence[int]) -> tuple[int, tuple[int, ...]]:
    """Sort choice sequences in shortlex order.

    Shorter sequences are simpler, and among sequences of equal length the one
    with the smaller value at the first differing position wins.  The shrinker
    only ever accepts a candidate which is strictly smaller under this key.
    """
    return (len(choices), tuple(choices))


class ChoiceSource:
    """Produces (or replays) the bounded integers which every generated value
    is built from.

    Values are read from ``prefix`` first.  Once the prefix is used up, fresh
    values come from ``random`` if we have one; otherwise this is a pure replay
    and running past the end is an overrun.
    """

    def __init__(
        self,
        prefix: Sequence[int] = (),
        *,
        random: Optional[Random] = None,
        max_size: int = BUFFER_SIZE,
    ) -> None:
        self.prefix = tuple(prefix)
        self.random = random
        self.max_size = max_size
        self.draws: list[Draw] = []
        self.frozen = False

    def __repr__(self) -> str:
        mode = "replay" if self.random is None else "random"
        return f"ChoiceSource({mode}, choices={self.choices!r})"

    @property
    def choices(self) -> ChoicesT:
        return tuple(d.value for d in self.draws)

    @property
    def index(self) -> int:
        return len(self.draws)

    def draw(
        self, max_value: int, *, sample: Optional[Callable[[Random], int]] = None
    ) -> int:
        """Return an integer in ``[0, max_value]`` and record it.

        ``sample`` replaces the uniform distribution for fresh draws.  Its
        result is clamped into range, and it is never consulted on replay.
        """
        if self.frozen:
            raise Frozen("Cannot draw from a choice source after it has been frozen")
        if not isinstance(max_value, int) or not 0 <= max_value <= MAX_DRAW:
            raise UsageError(
                f"max_value={max_value!r} must be an integer between 0 and 2**64 - 1"
            )

        i = self.index
        if i >= self.max_size:
            raise DataExhausted(
                OverrunReason.DRAW_BUDGET
                if self.random is not None
                else OverrunReason.REPLAY_EXHAUSTED
            )
        if i < len(self.prefix):
            value = self.prefix[i]
            if value > max_value:
                raise InvalidChoice(
                    f"replayed value {value} at index {i} exceeds bound {max_value}"
                )
        elif self.random is None:
            raise DataExhausted(OverrunReason.REPLAY_EXHAUSTED)
        elif sample is not None:
            value = min(max(sample(self.random), 0), max_value)
        else:
            value = self.random.randint(0, max_value)

        self.draws.append(Draw(value=value, max_value=max_value, index=i))
        return value

    def weighted(self, p: float) -> bool:
        """Return True with probability ``p``.

        A certain outcome (``p <= 0`` or ``p >= 1``) makes no draw at all, so
        it has nothing to shrink and nothing to replay.
        """
        if p <= 0:
            return False
        if p >= 1:
            return True
        return bool(self.draw(1, sample=lambda r: int(r.random() < p)))

    def freeze(self) -> None:
        self.frozen = True
