"""Possibilities: composable generators of values.

A possibility describes how to produce one value of some type from a test case,
by making draws from its choice source.  Possibilities hold no reference to any
test case, so the same possibility can be shared freely across trials; every
call to `produce` receives the test case to draw from.

The built-in kinds below form a closed set.  User-defined generators go through
the single extension point, `Custom` (usually via the `composite` decorator).
"""

import math
import string
from collections.abc import Hashable, Iterable, Sequence
from functools import wraps
from random import Random
from typing import Any, Callable, Generic, Optional, TypeVar

from hypothesis.internal.reflection import get_pretty_function_description

from hypocheck.choices import MAX_DRAW
from hypocheck.errors import GenerationExhausted, StopTest, UsageError
from hypocheck.floats import (
    assemble,
    decode_exponent,
    float_format,
    float_of_bits,
    round_to_width,
    update_mantissa,
)
from hypocheck.testcase import TestCase

T = TypeVar("T")
U = TypeVar("U")

# how many times a filter may retry before we give up on it entirely.
MAX_FILTER_ATTEMPTS = 100_000
# consecutive duplicate elements a unique collection tolerates before the trial
# is rejected.
MAX_UNIQUE_ATTEMPTS = 10
# the size cap for collections with no max_size
COLLECTION_DEFAULT_MAX_SIZE = 10_000
AVERAGE_COLLECTION_SIZE = 5.0
# the default alphabet for text(), in shrink order
PRINTABLE = string.digits + string.ascii_letters + string.punctuation + " "


def _describe(f: Callable) -> str:
    return get_pretty_function_description(f)


def _check_possibility(value: object, name: str) -> "Possibility":
    if not isinstance(value, Possibility):
        raise UsageError(f"{name}={value!r} must be a Possibility")
    return value


class Possibility(Generic[T]):
    def produce(self, tc: TestCase) -> T:
        raise NotImplementedError

    def map(self, f: Callable[[T], U]) -> "Possibility[U]":
        return Map(self, f)

    def filter(self, predicate: Callable[[T], object]) -> "Possibility[T]":
        return Filter(self, predicate)

    def bind(self, f: Callable[[T], "Possibility[U]"]) -> "Possibility[U]":
        return Bind(self, f)

    def __or__(self, other: "Possibility[U]") -> "OneOf":
        return OneOf(self, _check_possibility(other, "other"))

    def example(self, random: Optional[Random] = None) -> T:
        """Produce a single value from a fresh random test case.

        This is for interactive exploration; don't use it inside properties.
        """
        random = Random() if random is None else random
        for _ in range(1000):
            tc = TestCase.fresh(random)
            try:
                return self.produce(tc)
            except StopTest:
                continue
        raise GenerationExhausted(f"Could not produce an example from {self!r}")


class Integers(Possibility[int]):
    def __init__(self, min_value: int, max_value: int) -> None:
        for name, value in [("min_value", min_value), ("max_value", max_value)]:
            if not isinstance(value, int) or isinstance(value, bool):
                raise UsageError(f"{name}={value!r} must be an integer")
        if min_value > max_value:
            raise UsageError(f"min_value={min_value} > max_value={max_value}")
        self.min_value = min_value
        self.max_value = max_value

    def __repr__(self) -> str:
        return f"integers({self.min_value}, {self.max_value})"

    def produce(self, tc: TestCase) -> int:
        span = self.max_value - self.min_value
        if span <= MAX_DRAW:
            return self.min_value + tc.draw(span)

        # Ranges wider than a single draw are built from 64-bit chunks, most
        # significant first. Each chunk is bounded by the matching chunk of the
        # span for as long as the value so far is tight against it, which keeps
        # the result in range without ever rejecting.
        n_chunks = (span.bit_length() + 63) // 64
        value = 0
        tight = True
        for shift in reversed(range(n_chunks)):
            limit = (span >> (64 * shift)) & MAX_DRAW if tight else MAX_DRAW
            chunk = tc.draw(limit)
            tight = tight and chunk == limit
            value = (value << 64) | chunk
        return self.min_value + value


class Floats(Possibility[float]):
    def __init__(
        self,
        *,
        width: int = 64,
        allow_nan: bool = True,
        allow_infinity: bool = True,
    ) -> None:
        try:
            self.format = float_format(width)
        except ValueError as e:
            raise UsageError(str(e)) from None
        self.width = width
        self.allow_nan = allow_nan
        self.allow_infinity = allow_infinity

    def __repr__(self) -> str:
        return (
            f"floats(width={self.width}, allow_nan={self.allow_nan}, "
            f"allow_infinity={self.allow_infinity})"
        )

    def produce(self, tc: TestCase) -> float:
        fmt = self.format
        sign = tc.draw(1)
        if tc.draw(1) == 0:
            # simple: an integral value, drawn as an ordinary integer
            magnitude = round_to_width(
                float(tc.draw((1 << (fmt.width - 8)) - 1)), self.width
            )
        else:
            # The all-ones exponent sorts last in the lexicographic order, so
            # leaving out inf and nan is just a smaller bound on this draw.
            nonfinite = self.allow_nan or self.allow_infinity
            lex = tc.draw(fmt.max_exponent if nonfinite else fmt.max_exponent - 1)
            exponent = decode_exponent(lex, self.width)
            mantissa = update_mantissa(
                exponent, tc.draw((1 << fmt.mantissa_bits) - 1), self.width
            )
            if exponent == fmt.max_exponent:
                if not self.allow_nan:
                    mantissa = 0
                elif not self.allow_infinity:
                    mantissa = mantissa or 1
            magnitude = float_of_bits(
                assemble(0, exponent, mantissa, self.width), self.width
            )
        return -magnitude if sign else magnitude


class Booleans(Possibility[bool]):
    def __init__(self, p: float = 0.5) -> None:
        if not 0 <= p <= 1:
            raise UsageError(f"p={p!r} must be between 0 and 1")
        self.p = p

    def __repr__(self) -> str:
        return "booleans()" if self.p == 0.5 else f"booleans(p={self.p})"

    def produce(self, tc: TestCase) -> bool:
        return tc.weighted(self.p)


class SampledFrom(Possibility[T]):
    def __init__(self, values: Iterable[T]) -> None:
        self.values = tuple(values)
        if not self.values:
            raise UsageError("Cannot sample from an empty collection")

    def __repr__(self) -> str:
        return f"sampled_from({list(self.values)!r})"

    def produce(self, tc: TestCase) -> T:
        return self.values[tc.draw(len(self.values) - 1)]


class Just(Possibility[T]):
    def __init__(self, value: T) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"just({self.value!r})"

    def produce(self, tc: TestCase) -> T:
        return self.value


class Nothing(Possibility[Any]):
    def __repr__(self) -> str:
        return "nothing()"

    def produce(self, tc: TestCase) -> Any:
        tc.reject("nothing() can never produce a value")


class Map(Possibility[U]):
    def __init__(self, source: Possibility[T], f: Callable[[T], U]) -> None:
        self.source = source
        self.f = f

    def __repr__(self) -> str:
        return f"{self.source!r}.map({_describe(self.f)})"

    def produce(self, tc: TestCase) -> U:
        return self.f(self.source.produce(tc))


class Filter(Possibility[T]):
    def __init__(
        self,
        source: Possibility[T],
        predicate: Callable[[T], object],
        *,
        max_attempts: int = MAX_FILTER_ATTEMPTS,
    ) -> None:
        self.source = source
        self.predicates = [predicate]
        self.max_attempts = max_attempts

    def __repr__(self) -> str:
        filters = "".join(f".filter({_describe(p)})" for p in self.predicates)
        return f"{self.source!r}{filters}"

    def filter(self, predicate: Callable[[T], object]) -> "Filter[T]":
        # merge chained filters, so they share a single retry loop
        merged = Filter(self.source, self.predicates[0], max_attempts=self.max_attempts)
        merged.predicates = [*self.predicates, predicate]
        return merged

    def produce(self, tc: TestCase) -> T:
        for _ in range(self.max_attempts):
            value = self.source.produce(tc)
            if all(predicate(value) for predicate in self.predicates):
                return value
            tc.filter_retries += 1
        raise GenerationExhausted(
            f"{self!r} failed to produce a value satisfying its predicate after "
            f"{self.max_attempts} attempts"
        )


class Bind(Possibility[U]):
    def __init__(
        self, source: Possibility[T], f: Callable[[T], Possibility[U]]
    ) -> None:
        self.source = source
        self.f = f

    def __repr__(self) -> str:
        return f"{self.source!r}.bind({_describe(self.f)})"

    def produce(self, tc: TestCase) -> U:
        inner = self.f(self.source.produce(tc))
        return _check_possibility(inner, "bind result").produce(tc)


class Composite(Possibility[U]):
    """Produce from each possibility in the declared order, then combine.

    The choice sequence is the concatenation of each sub-sequence in order, so
    a shrink in one argument never disturbs the draws of the others.
    """

    def __init__(self, *possibilities: Possibility, f: Callable[..., U]) -> None:
        self.possibilities = tuple(
            _check_possibility(p, f"possibilities[{i}]")
            for i, p in enumerate(possibilities)
        )
        self.f = f

    def __repr__(self) -> str:
        args = ", ".join(map(repr, self.possibilities))
        return f"compose({_describe(self.f)}, {args})"

    def produce(self, tc: TestCase) -> U:
        return self.f(*(p.produce(tc) for p in self.possibilities))


class Lists(Possibility[list[T]]):
    def __init__(
        self,
        elements: Possibility[T],
        *,
        min_size: int = 0,
        max_size: Optional[int] = None,
        unique_by: Optional[Callable[[T], Hashable]] = None,
        average_size: float = AVERAGE_COLLECTION_SIZE,
    ) -> None:
        self.elements = _check_possibility(elements, "elements")
        if not isinstance(min_size, int) or min_size < 0:
            raise UsageError(f"min_size={min_size!r} must be a non-negative integer")
        if max_size is not None and (
            not isinstance(max_size, int) or max_size < min_size
        ):
            raise UsageError(
                f"max_size={max_size!r} must be an integer no smaller than "
                f"min_size={min_size}"
            )
        if max_size is None and min_size > COLLECTION_DEFAULT_MAX_SIZE:
            raise UsageError(
                f"min_size={min_size} is larger than the largest collection we "
                f"generate ({COLLECTION_DEFAULT_MAX_SIZE})"
            )
        self.min_size = min_size
        self.max_size = max_size
        self.unique_by = unique_by
        self.average_size = average_size

    def __repr__(self) -> str:
        return (
            f"lists({self.elements!r}, min_size={self.min_size}, "
            f"max_size={self.max_size})"
        )

    def _geometric(self, random: Random) -> int:
        # failures before the first success, with the given mean
        p = 1 / (self.average_size + 1)
        return int(math.log(1 - random.random()) / math.log(1 - p))

    def draw_size(self, tc: TestCase) -> int:
        if self.max_size is not None:
            return self.min_size + tc.draw(self.max_size - self.min_size)
        return self.min_size + tc.draw(
            COLLECTION_DEFAULT_MAX_SIZE - self.min_size, sample=self._geometric
        )

    def produce(self, tc: TestCase) -> list[T]:
        size = self.draw_size(tc)
        result: list[T] = []
        seen: set[Hashable] = set()
        while len(result) < size:
            for _ in range(MAX_UNIQUE_ATTEMPTS):
                value = self.elements.produce(tc)
                if self.unique_by is None:
                    break
                key = self.unique_by(value)
                if key not in seen:
                    seen.add(key)
                    break
            else:
                tc.reject(f"could not find {size} unique elements")
            result.append(value)
        return result


class OneOf(Possibility[Any]):
    def __init__(self, *possibilities: Possibility) -> None:
        flattened: list[Possibility] = []
        for i, p in enumerate(possibilities):
            _check_possibility(p, f"possibilities[{i}]")
            flattened.extend(p.possibilities if isinstance(p, OneOf) else [p])
        if not flattened:
            raise UsageError("one_of() requires at least one possibility")
        self.possibilities = tuple(flattened)

    def __repr__(self) -> str:
        return " | ".join(map(repr, self.possibilities))

    def produce(self, tc: TestCase) -> Any:
        return self.possibilities[tc.draw(len(self.possibilities) - 1)].produce(tc)


class _Descend(Possibility[T]):
    def __init__(self, inner: Possibility[T]) -> None:
        self.inner = inner

    def __repr__(self) -> str:
        return repr(self.inner)

    def produce(self, tc: TestCase) -> T:
        with tc.descend():
            return self.inner.produce(tc)


class Recursive(Possibility[Any]):
    """Nested structures of up to ``max_layers`` applications of ``extend``.

    We first draw how many layers to allow.  Layer zero is the base, and each
    further layer is ``base | extend(previous layer)``, so the innermost values
    are always forced to the base and shrinking the layer draw flattens the
    structure.
    """

    def __init__(
        self,
        base: Possibility,
        extend: Callable[[Possibility], Possibility],
        *,
        max_layers: int = 5,
    ) -> None:
        if not isinstance(max_layers, int) or max_layers < 0:
            raise UsageError(f"max_layers={max_layers!r} must be a non-negative int")
        self.base = _check_possibility(base, "base")
        self.extend = extend
        self.max_layers = max_layers
        self._layers: list[Possibility] = [self.base]

    def __repr__(self) -> str:
        return (
            f"recursive({self.base!r}, {_describe(self.extend)}, "
            f"max_layers={self.max_layers})"
        )

    def layer(self, n: int) -> Possibility:
        while len(self._layers) <= n:
            extended = self.extend(_Descend(self._layers[-1]))
            _check_possibility(extended, "extend(...)")
            self._layers.append(OneOf(self.base, extended))
        return self._layers[n]

    def produce(self, tc: TestCase) -> Any:
        return self.layer(tc.draw(self.max_layers)).produce(tc)


class Deferred(Possibility[Any]):
    """A possibility defined lazily, so that it can refer to itself.

    Each production counts as one level of recursion on the test case, and
    nesting beyond the test case's maximum depth is an overrun.
    """

    def __init__(self, definition: Callable[[], Possibility]) -> None:
        self.definition = definition
        self._wrapped: Optional[Possibility] = None

    def __repr__(self) -> str:
        return f"deferred({_describe(self.definition)})"

    @property
    def wrapped(self) -> Possibility:
        if self._wrapped is None:
            self._wrapped = _check_possibility(self.definition(), "definition()")
        return self._wrapped

    def produce(self, tc: TestCase) -> Any:
        with tc.descend():
            return self.wrapped.produce(tc)


class Custom(Possibility[T]):
    """The extension point for user-defined generators.

    ``fn`` receives the test case (plus any extra arguments) and draws from it
    directly, or via ``tc.produce(...)``.
    """

    def __init__(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> None:
        self.fn = fn
        self.args = args
        self.kwargs = kwargs

    def __repr__(self) -> str:
        return f"{getattr(self.fn, '__name__', _describe(self.fn))}()"

    def produce(self, tc: TestCase) -> T:
        return self.fn(tc, *self.args, **self.kwargs)


# The public constructors, in the familiar lower-case style.


def integers(min_value: int, max_value: int) -> Possibility[int]:
    return Integers(min_value, max_value)


def floats(
    *, width: int = 64, allow_nan: bool = True, allow_infinity: bool = True
) -> Possibility[float]:
    return Floats(width=width, allow_nan=allow_nan, allow_infinity=allow_infinity)


def booleans(p: float = 0.5) -> Possibility[bool]:
    return Booleans(p)


def sampled_from(values: Sequence[T]) -> Possibility[T]:
    return SampledFrom(values)


def just(value: T) -> Possibility[T]:
    return Just(value)


def nothing() -> Possibility[Any]:
    return Nothing()


def one_of(*possibilities: Possibility) -> Possibility[Any]:
    return OneOf(*possibilities)


def compose(f: Callable[..., U], *possibilities: Possibility) -> Possibility[U]:
    return Composite(*possibilities, f=f)


def tuples(*possibilities: Possibility) -> Possibility[tuple]:
    return Composite(*possibilities, f=lambda *values: tuple(values))


def lists(
    elements: Possibility[T],
    *,
    min_size: int = 0,
    max_size: Optional[int] = None,
    unique: bool = False,
    unique_by: Optional[Callable[[T], Hashable]] = None,
) -> Possibility[list[T]]:
    if unique and unique_by is None:
        unique_by = lambda x: x  # noqa: E731
    return Lists(elements, min_size=min_size, max_size=max_size, unique_by=unique_by)


def dictionaries(
    keys: Possibility[T],
    values: Possibility[U],
    *,
    min_size: int = 0,
    max_size: Optional[int] = None,
) -> Possibility[dict[T, U]]:
    return Lists(
        tuples(keys, values),
        min_size=min_size,
        max_size=max_size,
        unique_by=lambda kv: kv[0],
    ).map(dict)


def text(
    alphabet: Optional[Possibility[str]] = None,
    *,
    min_size: int = 0,
    max_size: Optional[int] = None,
) -> Possibility[str]:
    if alphabet is None:
        alphabet = SampledFrom(PRINTABLE)
    return Lists(alphabet, min_size=min_size, max_size=max_size).map("".join)


def recursive(
    base: Possibility,
    extend: Callable[[Possibility], Possibility],
    *,
    max_layers: int = 5,
) -> Possibility[Any]:
    return Recursive(base, extend, max_layers=max_layers)


def deferred(definition: Callable[[], Possibility]) -> Possibility[Any]:
    return Deferred(definition)


def composite(fn: Callable[..., T]) -> Callable[..., Possibility[T]]:
    """Turn ``fn(tc, *args, **kwargs)`` into a function returning a possibility.

    >>> @composite
    ... def sorted_pairs(tc):
    ...     a = tc.produce(integers(0, 10))
    ...     return (a, tc.produce(integers(a, 10)))
    """

    @wraps(fn)
    def accept(*args: Any, **kwargs: Any) -> Possibility[T]:
        return Custom(fn, *args, **kwargs)

    return accept
