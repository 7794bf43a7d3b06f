import pytest

from hypocheck.errors import UsageError
from hypocheck.settings import Settings


def test_defaults():
    settings = Settings()
    assert settings.max_examples == 100
    assert settings.discard_budget == 1000
    assert settings.database == "default"
    assert settings.targeting


def test_explicit_discard_budget():
    assert Settings(max_discards=5).discard_budget == 5


def test_replace_returns_new_settings():
    settings = Settings()
    changed = settings.replace(max_examples=5)
    assert changed.max_examples == 5
    assert settings.max_examples == 100


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_examples": 0},
        {"max_examples": None},
        {"max_examples": 1.5},
        {"max_examples": True},
        {"max_discards": -1},
        {"buffer_size": 0},
        {"max_depth": 0},
        {"deadline": 0},
        {"deadline": "1"},
        {"shrink_timeout": -1.0},
        {"max_shrinks": 0},
    ],
    ids=repr,
)
def test_invalid_settings(kwargs):
    with pytest.raises(UsageError):
        Settings(**kwargs)


def test_replace_unknown_setting():
    with pytest.raises(UsageError):
        Settings().replace(not_a_setting=1)


def test_settings_are_immutable():
    with pytest.raises(AttributeError):
        Settings().max_examples = 1
