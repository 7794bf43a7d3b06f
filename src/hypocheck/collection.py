"""Find the properties defined in a set of modules."""

import hashlib
import importlib
import importlib.util
import inspect
import sys
import traceback
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Optional

from hypocheck.property import Property


@dataclass
class CollectionResult:
    properties: list[Property] = field(default_factory=list)
    not_collected: dict[str, dict[str, Any]] = field(default_factory=dict)


def _module_name(path: Path) -> str:
    name = path.stem
    existing = sys.modules.get(name)
    if existing is None or _module_file(existing) == path:
        return name
    # a different file with the same stem is already imported
    digest = hashlib.sha1(str(path).encode()).hexdigest()[:12]
    return f"{name}_{digest}"


def _module_file(module: ModuleType) -> Optional[Path]:
    file = getattr(module, "__file__", None)
    return None if file is None else Path(file).resolve()


def _import(target: str) -> ModuleType:
    # accept either a dotted module name or a path to a .py file
    if target.endswith(".py") or Path(target).is_file():
        path = Path(target).resolve()
        name = _module_name(path)
        spec = importlib.util.spec_from_file_location(name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot import {target!r}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[name] = module
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(target)


class _Collector:
    def __init__(self) -> None:
        self.result = CollectionResult()

    def _skip_because(
        self, status_reason: str, name: str, kwargs: Optional[dict[str, Any]] = None
    ) -> None:
        self.result.not_collected[name] = {
            "status_reason": status_reason,
            **(kwargs or {}),
        }

    def collect_module(self, target: str) -> None:
        try:
            module = _import(target)
        except Exception as e:
            tb = traceback.format_exception(type(e), e, e.__traceback__)
            self._skip_because("import_error", target, {"traceback": "".join(tb)})
            return

        for attr, value in vars(module).items():
            prop = getattr(value, "hypocheck", value)
            if isinstance(prop, Property):
                # skip properties imported from another module
                if getattr(prop.fn, "__module__", module.__name__) != module.__name__:
                    continue
                self.result.properties.append(prop)
            elif attr.startswith("test") and inspect.isfunction(value):
                self._skip_because("not_a_property", f"{module.__name__}.{attr}")


def collect_properties(targets: Iterable[str]) -> CollectionResult:
    collector = _Collector()
    for target in targets:
        collector.collect_module(target)
    return collector.result
