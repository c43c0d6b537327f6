"""Deterministic function discovery and resolution registry."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable
import importlib
import inspect
import logging

from targetflow.errors import FunctionNotFoundError

logger = logging.getLogger("targetflow.registry")

FunctionFn = Callable[..., Any]


@dataclass(frozen=True)
class FunctionSpec:
    """Function descriptor resolvable from expression commands."""

    name: str
    namespace: str
    func: FunctionFn
    description: str = ""

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.name}"


def _describe(func: FunctionFn) -> str:
    doc = inspect.getdoc(func) or ""
    return doc.strip().split("\n")[0] if doc else ""


class FunctionRegistry:
    """Registry with deterministic namespace loading and name resolution.

    Qualified names (``namespace.name``) always resolve to their namespace.
    Unqualified names resolve to the first imported namespace that defines
    them, ``default`` first.
    """

    def __init__(self, include_defaults: bool = True) -> None:
        self._specs_by_qualified: OrderedDict[str, FunctionSpec] = OrderedDict()
        self._unqualified: dict[str, FunctionSpec] = {}
        self._import_order: list[str] = []
        if include_defaults:
            from targetflow.functions.default import FUNCTIONS

            for name, func in FUNCTIONS.items():
                self.register(name, func, namespace="default")
            self._import_order.append("default")

    @property
    def imported_namespaces(self) -> tuple[str, ...]:
        return tuple(self._import_order)

    def register(self, name: str, func: FunctionFn, namespace: str = "default") -> FunctionSpec:
        if not callable(func):
            raise TypeError(f"Function '{name}' is not callable")
        if not name:
            raise ValueError("Function name cannot be empty")
        spec = FunctionSpec(name=name, namespace=namespace, func=func, description=_describe(func))
        self._specs_by_qualified[spec.qualified_name] = spec
        if name not in self._unqualified:
            self._unqualified[name] = spec
        return spec

    def import_module(self, module_name: str) -> int:
        """Register the public callables of a Python module under its name.

        Returns the number of functions registered.
        """
        if module_name in self._import_order:
            return 0
        module = importlib.import_module(module_name)
        exported = getattr(module, "__all__", None)
        names = list(exported) if exported is not None else sorted(vars(module))
        count = 0
        for name in names:
            if name.startswith("_"):
                continue
            value = getattr(module, name, None)
            if value is None or inspect.ismodule(value) or inspect.isclass(value):
                continue
            if not callable(value):
                continue
            self.register(name, value, namespace=module_name)
            count += 1
        self._import_order.append(module_name)
        logger.debug("Imported %d functions from module %s", count, module_name)
        return count

    def resolve(self, name: str) -> FunctionFn:
        spec = self._specs_by_qualified.get(name)
        if spec is None:
            spec = self._unqualified.get(name)
        if spec is None:
            raise FunctionNotFoundError(name)
        return spec.func

    def has(self, name: str) -> bool:
        return name in self._specs_by_qualified or name in self._unqualified

    def list_functions(self, namespace: str | None = None) -> dict[str, str]:
        """Map qualified function names to one-line descriptions."""
        return {
            qualified: spec.description
            for qualified, spec in self._specs_by_qualified.items()
            if namespace is None or spec.namespace == namespace
        }
