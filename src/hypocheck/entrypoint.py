"""CLI for running properties."""

import logging
import sys
from multiprocessing import Process
from typing import NoReturn, Optional

import click
import psutil

from hypocheck.collection import collect_properties
from hypocheck.database import DatabaseT, directory_database, in_memory_database
from hypocheck.property import Property
from hypocheck.report import ReportStatus
from hypocheck.settings import Settings


# module and qualified name, which unlike the bare name is unique per run
PropertyId = tuple[str, str]


def property_id(prop: Property) -> PropertyId:
    return (getattr(prop.fn, "__module__", ""), prop.name)


def select_properties(
    targets: tuple[str, ...], ids: list[PropertyId]
) -> list[Property]:
    # each worker collects for itself, since properties don't pickle
    wanted = set(ids)
    return [
        p for p in collect_properties(targets).properties if property_id(p) in wanted
    ]


def _database_setting(value: str) -> DatabaseT:
    if value == "none":
        return None
    if value == ":memory:":
        return in_memory_database()
    if value == "default":
        return "default"
    return directory_database(value)


@click.command()
@click.option(
    "-n",
    "--numprocesses",
    type=click.IntRange(1, None),
    metavar="NUM",
    default=psutil.cpu_count(logical=False) or psutil.cpu_count() or 1,
    help="default: all available cores",
)
@click.option(
    "--max-examples",
    type=click.IntRange(1, None),
    default=Settings.max_examples,
    show_default=True,
    help="valid examples to run for each property",
)
@click.option(
    "--seed",
    type=click.IntRange(0, None),
    default=None,
    help="random seed, for reproducing a previous run",
)
@click.option(
    "--database",
    default="default",
    metavar="DIR|:memory:|none",
    help="where to store failing examples (default: .hypocheck/examples)",
)
@click.option("-v", "--verbose", is_flag=True, help="log engine progress")
@click.argument("targets", nargs=-1, required=True, metavar="MODULE_OR_FILE...")
def main(
    numprocesses: int,
    max_examples: int,
    seed: Optional[int],
    database: str,
    verbose: bool,
    targets: tuple[str, ...],
) -> NoReturn:
    """[hypocheck] searches each property in the given modules for a
    counterexample, and reports the minimal failing input for each.

    Exits with status 1 if any property failed or gave up.
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)

    collected = collect_properties(targets)
    for name, info in collected.not_collected.items():
        if info["status_reason"] == "import_error":
            print(f"could not import {name}:\n{info['traceback']}", file=sys.stderr)
    properties = collected.properties
    if not properties:
        raise click.UsageError(f"No properties were collected from {targets}")

    print(f"collected {len(properties)} properties")
    numprocesses = min(numprocesses, len(properties))
    ids = [property_id(p) for p in properties]
    settings_kwargs = {"max_examples": max_examples, "database": database}

    if numprocesses <= 1:
        ok = _check_several(targets, ids, settings_kwargs, seed)
        sys.exit(0 if ok else 1)

    processes: list[Process] = []
    for i in range(numprocesses):
        # Round-robin, so that each worker gets its own share of the properties
        p = Process(
            target=_check_worker,
            kwargs={
                "targets": targets,
                "ids": ids[i::numprocesses],
                "settings_kwargs": settings_kwargs,
                "seed": seed,
            },
        )
        p.start()
        processes.append(p)
    for p in processes:
        p.join()
    sys.exit(0 if all(p.exitcode == 0 for p in processes) else 1)


def _check_worker(**kwargs: object) -> NoReturn:
    sys.exit(0 if _check_several(**kwargs) else 1)  # type: ignore


def _check_several(
    targets: tuple[str, ...],
    ids: list[PropertyId],
    settings_kwargs: dict,
    seed: Optional[int],
) -> bool:
    properties = select_properties(targets, ids)
    settings = Settings(
        max_examples=settings_kwargs["max_examples"],
        database=_database_setting(settings_kwargs["database"]),
    )
    ok = True
    for prop in properties:
        report = prop.check(settings, seed=seed)
        print(report)
        ok = ok and report.status is ReportStatus.PASSED
    return ok
