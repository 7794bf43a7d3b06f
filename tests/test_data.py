from random import Random

import pytest
from common import fresh, replay
from hypothesis import given, strategies as st
from strategies import (
    bounded_lists,
    choice_sequences,
    integer_possibilities,
    leaf_possibilities,
    possibilities,
)

from hypocheck import data as pd
from hypocheck.choices import MAX_DRAW, OverrunReason
from hypocheck.errors import GenerationExhausted, UsageError
from hypocheck.testcase import Status

randoms = st.randoms(use_true_random=False)


@given(integer_possibilities(), randoms)
def test_integers_are_in_bounds(possibility, random):
    tc, value = fresh(possibility, random)
    assert tc.status is Status.VALID
    assert possibility.min_value <= value <= possibility.max_value


def test_integers_shrink_towards_min_value():
    _, value = replay(pd.integers(-5, 5), (0,))
    assert value == -5


def test_wide_integers_use_several_draws():
    lo, hi = -(2**80), 2**80
    tc, value = replay(pd.integers(lo, hi), (0, 0))
    assert value == lo
    assert len(tc.choices) == 2

    span = hi - lo
    tc, value = replay(pd.integers(lo, hi), (span >> 64, span & MAX_DRAW))
    assert tc.status is Status.VALID
    assert value == hi


def test_wide_integers_are_bounded_while_tight():
    span = 2**80
    # the high chunk is at its limit, so the low chunk may not exceed the span's
    tc, _ = replay(pd.integers(0, span), (span >> 64, 1))
    assert tc.status is Status.INVALID
    # but once the high chunk is below its limit, any low chunk is fine
    tc, value = replay(pd.integers(0, span), ((span >> 64) - 1, MAX_DRAW))
    assert tc.status is Status.VALID
    assert value < span


@pytest.mark.parametrize(
    "args", [(1, 0), (0.5, 1), (0, "1"), (True, 2)], ids=repr
)
def test_bad_integer_bounds(args):
    with pytest.raises(UsageError):
        pd.integers(*args)


def test_booleans_replay():
    assert replay(pd.booleans(), (1,))[1] is True
    assert replay(pd.booleans(), (0,))[1] is False


@pytest.mark.parametrize("p", [0, 1])
def test_certain_booleans_make_no_draws(p):
    tc, value = replay(pd.booleans(p), ())
    assert tc.status is Status.VALID
    assert value is bool(p)


@given(st.lists(st.integers(), min_size=1), randoms)
def test_sampled_from_picks_an_element(values, random):
    _, value = fresh(pd.sampled_from(values), random)
    assert value in values


def test_sampled_from_shrinks_towards_first_element():
    assert replay(pd.sampled_from("abc"), (0,))[1] == "a"


def test_sampled_from_empty_is_an_error():
    with pytest.raises(UsageError):
        pd.sampled_from([])


def test_just_makes_no_draws():
    tc, value = replay(pd.just(7), ())
    assert value == 7
    assert tc.choices == ()


def test_nothing_is_always_invalid():
    tc, _ = fresh(pd.nothing(), Random(0))
    assert tc.status is Status.INVALID


def test_map_applies_function():
    assert replay(pd.integers(0, 10).map(lambda x: x * 2), (3,))[1] == 6


@given(integer_possibilities(), randoms)
def test_filtered_values_satisfy_predicate(possibility, random):
    filtered = possibility.filter(lambda x: x % 3 == 0)
    tc, value = fresh(filtered, random)
    if tc.status is Status.VALID:
        assert value % 3 == 0


def test_filter_never_retries_when_predicate_always_holds():
    possibility = pd.integers(0, MAX_DRAW).map(lambda x: x * 2).filter(
        lambda x: x % 2 == 0
    )
    random = Random(0)
    for _ in range(100):
        tc, value = fresh(possibility, random)
        assert value % 2 == 0
        assert tc.filter_retries == 0


def test_filter_counts_retries():
    tc, value = replay(pd.integers(0, 10).filter(lambda x: x > 2), (0, 1, 5))
    assert value == 5
    assert tc.filter_retries == 2


def test_chained_filters_are_merged():
    possibility = pd.integers(0, 10).filter(lambda x: x > 2).filter(
        lambda x: x % 2 == 0
    )
    assert isinstance(possibility, pd.Filter)
    assert len(possibility.predicates) == 2
    assert isinstance(possibility.source, pd.Integers)
    assert replay(possibility, (3, 1, 4))[1] == 4


def test_filter_gives_up_after_too_many_attempts():
    possibility = pd.Filter(pd.just(1), lambda x: x > 1, max_attempts=10)
    with pytest.raises(GenerationExhausted):
        fresh(possibility, Random(0))


def test_bind_draws_from_the_returned_possibility():
    possibility = pd.integers(1, 5).bind(lambda n: pd.lists(pd.just(n), max_size=n))
    _, value = replay(possibility, (2, 3))
    assert value == [3, 3, 3]


def test_bind_must_return_a_possibility():
    with pytest.raises(UsageError):
        replay(pd.integers(0, 1).bind(lambda n: n), (0,))


def test_compose_produces_arguments_in_order():
    possibility = pd.compose(
        lambda a, b: (a, b), pd.integers(0, 10), pd.integers(100, 110)
    )
    tc, value = replay(possibility, (1, 2))
    assert value == (1, 102)
    assert tc.choices == (1, 2)


def test_tuples():
    assert replay(pd.tuples(pd.just(1), pd.booleans()), (1,))[1] == (1, True)


@given(st.data())
def test_lists_respect_size_bounds(data):
    possibility = data.draw(leaf_possibilities().flatmap(bounded_lists))
    tc, value = fresh(possibility, data.draw(randoms))
    if tc.status is Status.VALID:
        assert possibility.min_size <= len(value)
        if possibility.max_size is not None:
            assert len(value) <= possibility.max_size


def test_list_size_draw_comes_first():
    tc, value = replay(pd.lists(pd.integers(0, 10), max_size=5), (2, 7, 8))
    assert value == [7, 8]
    assert tc.choices == (2, 7, 8)


def test_empty_list_is_the_zero_choice():
    assert replay(pd.lists(pd.integers(0, 10)), (0,))[1] == []
    assert replay(pd.lists(pd.integers(0, 10), min_size=2), (0, 1, 2))[1] == [1, 2]


def test_unbounded_lists_are_small_on_average():
    random = Random(0)
    sizes = [len(fresh(pd.lists(pd.just(0)), random)[1]) for _ in range(200)]
    assert max(sizes) < 200
    assert 0 in sizes


@pytest.mark.parametrize(
    "kwargs",
    [{"min_size": -1}, {"min_size": 3, "max_size": 2}, {"max_size": 1.5}],
    ids=repr,
)
def test_bad_list_sizes(kwargs):
    with pytest.raises(UsageError):
        pd.lists(pd.just(0), **kwargs)


@given(randoms)
def test_unique_lists_have_no_duplicates(random):
    tc, value = fresh(pd.lists(pd.integers(0, 20), unique=True, max_size=10), random)
    if tc.status is Status.VALID:
        assert len(set(value)) == len(value)


def test_unique_list_rejects_when_elements_run_out():
    possibility = pd.lists(pd.just(0), min_size=2, unique=True)
    tc, _ = fresh(possibility, Random(0))
    assert tc.status is Status.INVALID


def test_unique_by_uses_the_key():
    possibility = pd.lists(
        pd.integers(0, 100), max_size=10, unique_by=lambda x: x % 10
    )
    random = Random(0)
    for _ in range(50):
        tc, value = fresh(possibility, random)
        if tc.status is Status.VALID:
            assert len({x % 10 for x in value}) == len(value)


@given(randoms)
def test_dictionaries(random):
    tc, value = fresh(
        pd.dictionaries(pd.integers(0, 5), pd.booleans(), max_size=3), random
    )
    if tc.status is Status.VALID:
        assert isinstance(value, dict)
        assert len(value) <= 3
        assert set(value) <= set(range(6))


def test_text_uses_printable_alphabet():
    _, value = replay(pd.text(max_size=3), (2, 0, 10))
    assert value == "0a"
    assert all(c in pd.PRINTABLE for c in pd.text().example(Random(0)))


def test_text_with_custom_alphabet():
    assert replay(pd.text(pd.sampled_from("xy"), max_size=2), (2, 1, 0))[1] == "yx"


def test_one_of_draws_the_branch_first():
    possibility = pd.one_of(pd.just("a"), pd.integers(0, 10))
    assert replay(possibility, (0,))[1] == "a"
    assert replay(possibility, (1, 4))[1] == 4


def test_one_of_flattens():
    possibility = pd.just(1) | pd.just(2) | pd.just(3)
    assert isinstance(possibility, pd.OneOf)
    assert len(possibility.possibilities) == 3


def test_one_of_needs_possibilities():
    with pytest.raises(UsageError):
        pd.one_of()
    with pytest.raises(UsageError):
        pd.just(1) | 2


def nesting(value):
    if isinstance(value, list):
        return 1 + max(map(nesting, value), default=0)
    return 0


@given(randoms)
def test_recursive_respects_max_layers(random):
    possibility = pd.recursive(
        pd.booleans(), lambda children: pd.lists(children, max_size=3), max_layers=3
    )
    tc, value = fresh(possibility, random)
    if tc.status is Status.VALID:
        assert nesting(value) <= 3


def test_recursive_layer_zero_is_the_base():
    possibility = pd.recursive(pd.just(0), lambda c: pd.lists(c, max_size=2))
    tc, value = replay(possibility, (0,))
    assert value == 0
    assert tc.choices == (0,)


def test_deferred_can_refer_to_itself():
    trees = pd.deferred(lambda: pd.just(None) | pd.tuples(trees, trees))
    _, value = replay(trees, (1, 0, 1, 0, 0))
    assert value == (None, (None, None))


def test_deeply_deferred_is_an_overrun():
    chains = pd.deferred(lambda: pd.just(None) | pd.tuples(chains))
    tc, _ = replay(chains, [1] * 100)
    assert tc.status is Status.OVERRUN
    assert tc.overrun_reason is OverrunReason.MAX_DEPTH


@pd.composite
def sorted_pairs(tc, upper=10):
    a = tc.produce(pd.integers(0, upper))
    return (a, tc.produce(pd.integers(a, upper)))


def test_composite():
    _, value = replay(sorted_pairs(), (3, 2))
    assert value == (3, 5)
    _, value = replay(sorted_pairs(upper=100), (50, 0))
    assert value == (50, 50)


@given(randoms)
def test_composite_values_are_consistent(random):
    _, (a, b) = fresh(sorted_pairs(), random)
    assert 0 <= a <= b <= 10


def test_example():
    assert pd.integers(3, 3).example(Random(0)) == 3


def test_example_of_nothing_gives_up():
    with pytest.raises(GenerationExhausted):
        pd.nothing().example(Random(0))


@pytest.mark.parametrize(
    "possibility",
    [
        pd.integers(0, 10),
        pd.floats(),
        pd.lists(pd.booleans(), max_size=3).map(len),
        pd.integers(0, 10).filter(lambda x: x > 5),
        pd.just(1) | pd.nothing(),
        sorted_pairs(),
    ],
    ids=repr,
)
def test_repr_does_not_error(possibility):
    assert repr(possibility)


@given(possibilities(), choice_sequences)
def test_replay_is_deterministic(possibility, choices):
    first, a = replay(possibility, choices)
    second, b = replay(possibility, choices)
    assert first.status is second.status
    assert first.choices == second.choices == choices[: len(first.choices)]
    assert repr(a) == repr(b)
