from __future__ import annotations

import pytest

from targetflow.errors import FunctionNotFoundError
from targetflow.registry import FunctionRegistry


@pytest.mark.unit
def test_defaults_are_available():
    registry = FunctionRegistry()
    assert registry.resolve("add")(2, 3) == 5
    assert registry.resolve("default.range")(3) == [0, 1, 2]
    assert registry.imported_namespaces == ("default",)


@pytest.mark.unit
def test_unqualified_resolution_prefers_first_namespace():
    registry = FunctionRegistry()
    registry.register("add", lambda a, b: "shadowed", namespace="custom")
    assert registry.resolve("add")(1, 2) == 3
    assert registry.resolve("custom.add")(1, 2) == "shadowed"


@pytest.mark.unit
def test_import_module_registers_callables_once():
    registry = FunctionRegistry()
    count = registry.import_module("operator")
    assert count > 0
    assert registry.import_module("operator") == 0
    assert registry.resolve("operator.mul")(6, 7) == 42
    assert "operator" in registry.imported_namespaces
    assert set(registry.list_functions("operator")) <= {
        name for name in registry.list_functions() if name.startswith("operator.")
    }


@pytest.mark.unit
def test_unknown_names():
    registry = FunctionRegistry(include_defaults=False)
    assert registry.list_functions() == {}
    with pytest.raises(FunctionNotFoundError):
        registry.resolve("add")
    with pytest.raises(ImportError):
        registry.import_module("definitely_not_a_module_name")


@pytest.mark.unit
def test_register_validates_input():
    registry = FunctionRegistry()
    with pytest.raises(TypeError):
        registry.register("x", 42)
    with pytest.raises(ValueError):
        registry.register("", len)
    spec = registry.register("twice", lambda value: value * 2, namespace="mine")
    assert spec.qualified_name == "mine.twice"
    assert registry.has("twice") and registry.has("mine.twice")


@pytest.mark.unit
def test_descriptions_come_from_docstrings():
    functions = FunctionRegistry().list_functions("default")
    assert functions["default.seq"] == "Collect the arguments into a list"
