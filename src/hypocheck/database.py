"""Persistence of failing choice sequences.

The engine only needs three operations: fetch, save and delete a single choice
sequence per property.  The storage itself is any Hypothesis
`ExampleDatabase`, so the directory, in-memory, read-only and multiplexed
backends which Hypothesis ships all work unchanged.
"""

import abc
import logging
from collections.abc import Callable
from typing import Optional, Union

import hypothesis.database
from hypothesis.database import (
    DirectoryBasedExampleDatabase,
    InMemoryExampleDatabase,
    choices_from_bytes,
    choices_to_bytes,
)
from hypothesis.internal.reflection import function_digest

from hypocheck.choices import ChoicesT
from hypocheck.errors import UsageError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_PATH = ".hypocheck/examples"

# settings.database may be one of these, the string "default", or None
DatabaseT = Union["ExampleDatabase", hypothesis.database.ExampleDatabase, str, None]


class ExampleDatabase(abc.ABC):
    """Stores at most one choice sequence per key."""

    @abc.abstractmethod
    def fetch(self, key: bytes) -> Optional[ChoicesT]:
        pass

    @abc.abstractmethod
    def save(self, key: bytes, choices: ChoicesT) -> None:
        pass

    @abc.abstractmethod
    def delete(self, key: bytes) -> None:
        pass


class CounterexampleDatabase(ExampleDatabase):
    def __init__(self, db: hypothesis.database.ExampleDatabase) -> None:
        self._db = db

    def __str__(self) -> str:
        return f"CounterexampleDatabase({self._db!r})"

    __repr__ = __str__

    def fetch(self, key: bytes) -> Optional[ChoicesT]:
        for value in self._db.fetch(key):
            choices = choices_from_bytes(value)
            # skip anything which isn't a sequence of draws, e.g. an entry
            # written by a different tool sharing this directory.
            if choices is None or not all(
                isinstance(c, int) and not isinstance(c, bool) and c >= 0
                for c in choices
            ):
                logger.debug("ignoring unparseable database entry under %r", key)
                continue
            return tuple(choices)
        return None

    def save(self, key: bytes, choices: ChoicesT) -> None:
        value = choices_to_bytes(tuple(choices))
        for existing in list(self._db.fetch(key)):
            if existing != value:
                self._db.delete(key, existing)
        self._db.save(key, value)

    def delete(self, key: bytes) -> None:
        for value in list(self._db.fetch(key)):
            self._db.delete(key, value)


class NoDatabase(ExampleDatabase):
    def __repr__(self) -> str:
        return "NoDatabase()"

    def fetch(self, key: bytes) -> Optional[ChoicesT]:
        return None

    def save(self, key: bytes, choices: ChoicesT) -> None:
        pass

    def delete(self, key: bytes) -> None:
        pass


def in_memory_database() -> CounterexampleDatabase:
    return CounterexampleDatabase(InMemoryExampleDatabase())


def directory_database(path: str = DEFAULT_DATABASE_PATH) -> CounterexampleDatabase:
    return CounterexampleDatabase(DirectoryBasedExampleDatabase(path))


def resolve_database(value: DatabaseT) -> ExampleDatabase:
    if value is None:
        return NoDatabase()
    if value == "default":
        return directory_database()
    if isinstance(value, ExampleDatabase):
        return value
    if isinstance(value, hypothesis.database.ExampleDatabase):
        return CounterexampleDatabase(value)
    raise UsageError(
        f"database={value!r} must be None, 'default', or an ExampleDatabase"
    )


def property_key(fn: Callable, name: Optional[str] = None) -> bytes:
    """A stable identity for a property, derived from its source code.

    Editing the body of the property changes the key, so a failure stored for
    the old version is no longer replayed.
    """
    digest = function_digest(fn)
    if name is not None:
        digest += name.encode()
    return digest
