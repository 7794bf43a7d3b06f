"""Property-based testing and structured fuzzing over choice sequences."""

from hypocheck.data import (
    Possibility,
    booleans,
    composite,
    compose,
    deferred,
    dictionaries,
    floats,
    integers,
    just,
    lists,
    nothing,
    one_of,
    recursive,
    sampled_from,
    text,
    tuples,
)
from hypocheck.errors import GenerationExhausted, PropertyFailure, UsageError
from hypocheck.property import Property, check, forall
from hypocheck.report import Report, ReportStatus
from hypocheck.settings import Settings
from hypocheck.testcase import TestCase

__version__ = "0.1.0"
__all__: list[str] = [
    "GenerationExhausted",
    "Possibility",
    "Property",
    "PropertyFailure",
    "Report",
    "ReportStatus",
    "Settings",
    "TestCase",
    "UsageError",
    "booleans",
    "check",
    "composite",
    "compose",
    "deferred",
    "dictionaries",
    "floats",
    "forall",
    "integers",
    "just",
    "lists",
    "nothing",
    "one_of",
    "recursive",
    "sampled_from",
    "text",
    "tuples",
]
