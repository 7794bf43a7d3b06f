import math
from random import Random

import pytest
from common import fresh, replay
from hypothesis import given, strategies as st

from hypocheck import data as pd
from hypocheck.floats import (
    FORMATS,
    assemble,
    bits_of_float,
    decode_exponent,
    encode_exponent,
    float_format,
    float_of_bits,
    float_to_lex,
    is_simple,
    lex_to_float,
    tear,
    update_mantissa,
)

widths = st.sampled_from(sorted(FORMATS))


@pytest.mark.parametrize("width", sorted(FORMATS))
def test_exponent_encoding_is_a_permutation(width):
    fmt = float_format(width)
    exponents = range(fmt.max_exponent + 1)
    assert sorted(decode_exponent(i, width) for i in exponents) == list(exponents)
    for e in exponents:
        assert decode_exponent(encode_exponent(e, width), width) == e


@pytest.mark.parametrize("width", sorted(FORMATS))
def test_exponent_encoding_order(width):
    fmt = float_format(width)
    # exponents 0, 1, 2, ... (unbiased) come first, and inf/nan last
    assert decode_exponent(0, width) == fmt.bias
    assert decode_exponent(1, width) == fmt.bias + 1
    assert decode_exponent(fmt.max_exponent, width) == fmt.max_exponent


@given(widths, st.data())
def test_tear_and_assemble_are_inverse(width, data):
    bits = data.draw(st.integers(0, 2**width - 1))
    assert assemble(*tear(bits, width), width=width) == bits


@given(widths, st.data())
def test_update_mantissa_is_an_involution(width, data):
    fmt = float_format(width)
    exponent = data.draw(st.integers(0, fmt.max_exponent))
    mantissa = data.draw(st.integers(0, 2**fmt.mantissa_bits - 1))
    once = update_mantissa(exponent, mantissa, width)
    assert update_mantissa(exponent, once, width) == mantissa


@given(st.floats(min_value=0, allow_nan=False))
def test_lex_encoding_roundtrips(x):
    assert lex_to_float(*float_to_lex(x)) == x


def test_bits_roundtrip():
    assert float_of_bits(bits_of_float(1.5)) == 1.5
    assert float_of_bits(bits_of_float(-2.0, 32), 32) == -2.0


def test_simple_floats():
    assert is_simple(3.0)
    assert is_simple(-3.0)
    assert not is_simple(0.5)
    assert not is_simple(math.inf)
    assert not is_simple(math.nan)


def test_all_zero_choices_give_zero():
    _, value = replay(pd.floats(), (0, 0, 0))
    assert value == 0.0
    assert math.copysign(1, value) == 1


def test_sign_draw_negates():
    _, value = replay(pd.floats(), (1, 0, 1))
    assert value == -1.0


def test_lex_exponent_zero_is_one():
    # not simple, exponent lex 0 (unbiased exponent 0), mantissa 0
    _, value = replay(pd.floats(), (0, 1, 0, 0))
    assert value == 1.0


@given(
    widths,
    st.booleans(),
    st.booleans(),
    st.randoms(use_true_random=False),
)
def test_floats_respect_nan_and_infinity_switches(
    width, allow_nan, allow_infinity, random
):
    possibility = pd.floats(
        width=width, allow_nan=allow_nan, allow_infinity=allow_infinity
    )
    for _ in range(20):
        _, x = fresh(possibility, random)
        assert allow_nan or not math.isnan(x)
        assert allow_infinity or not math.isinf(x)


@pytest.mark.parametrize("width", sorted(FORMATS))
def test_nonfinite_exponent_maps_to_allowed_value(width):
    fmt = float_format(width)
    _, x = replay(
        pd.floats(width=width, allow_infinity=False), (0, 1, fmt.max_exponent, 0)
    )
    assert math.isnan(x)
    _, x = replay(
        pd.floats(width=width, allow_nan=False), (0, 1, fmt.max_exponent, 5)
    )
    assert x == math.inf


@given(widths, st.randoms(use_true_random=False))
def test_floats_are_representable_at_width(width, random):
    _, x = fresh(pd.floats(width=width, allow_nan=False), random)
    assert float_of_bits(bits_of_float(x, width), width) == x


def test_floats_never_reject():
    random = Random(0)
    for _ in range(100):
        tc, _ = fresh(pd.floats(allow_nan=False, allow_infinity=False), random)
        assert tc.status.name == "VALID"
