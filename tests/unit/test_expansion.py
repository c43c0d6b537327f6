from __future__ import annotations

import pytest

from targetflow.errors import ExpansionError, LengthMismatchError
from targetflow.expansion import Dimension, expand
from targetflow.plan import Cross, Group, Map, Target
from targetflow.commands import as_command


def _target(name, transform, command="identity(x)"):
    return Target(name=name, command=as_command(command), transform=transform)


def _dims(**values):
    return {name: Dimension.from_value(name, value, owner="t") for name, value in values.items()}


@pytest.mark.unit
def test_map_yields_one_subtarget_per_element():
    expansion = expand(_target("t", Map("x")), _dims(x=[10, 20, 30]))
    assert len(expansion) == 3
    assert [sub.index for sub in expansion] == [0, 1, 2]
    assert [sub.bindings["x"] for sub in expansion] == [10, 20, 30]
    assert [sub.key for sub in expansion] == ["t[0]", "t[1]", "t[2]"]


@pytest.mark.unit
def test_map_zips_dimensions_element_wise():
    expansion = expand(_target("t", Map("x", "y"), "add(x, y)"), _dims(x=[1, 2], y=[10, 20]))
    assert [(sub.bindings["x"], sub.bindings["y"]) for sub in expansion] == [(1, 10), (2, 20)]
    assert [ref.key() for ref in expansion.subtargets[1].consumes] == ["x[1]", "y[1]"]


@pytest.mark.unit
def test_map_length_mismatch():
    with pytest.raises(LengthMismatchError) as excinfo:
        expand(_target("t", Map("x", "y"), "add(x, y)"), _dims(x=[1, 2, 3], y=[1, 2]))
    assert excinfo.value.lengths == {"x": 3, "y": 2}
    assert excinfo.value.target == "t"


@pytest.mark.unit
def test_cross_order_first_dimension_slowest():
    expansion = expand(
        _target("t", Cross("a", "b"), "pair(a, b)"),
        _dims(a=[1, 2, 3], b=["x", "y"]),
    )
    pairs = [(sub.bindings["a"], sub.bindings["b"]) for sub in expansion]
    assert pairs == [(1, "x"), (1, "y"), (2, "x"), (2, "y"), (3, "x"), (3, "y")]


@pytest.mark.unit
def test_cross_with_empty_dimension_is_empty():
    expansion = expand(_target("t", Cross("a", "b"), "pair(a, b)"), _dims(a=[1, 2], b=[]))
    assert len(expansion) == 0


@pytest.mark.unit
def test_group_partitions_by_key_in_first_occurrence_order():
    expansion = expand(
        _target("t", Group("values", by="keys"), "sum(values)"),
        _dims(values=[1, 2, 3, 4, 5, 6], keys=["b", "a", "b", "c", "a", "c"]),
    )
    assert len(expansion) == 3
    assert [sub.bindings["keys"] for sub in expansion] == ["b", "a", "c"]
    assert [sub.bindings["values"] for sub in expansion] == [[1, 3], [2, 5], [4, 6]]
    assert [sub.label for sub in expansion] == ["b", "a", "c"]


@pytest.mark.unit
def test_group_of_contiguous_keys():
    expansion = expand(
        _target("t", Group("values", by="keys"), "sum(values)"),
        _dims(values=[1, 2, 3, 4, 5, 6], keys=["a", "a", "b", "b", "c", "c"]),
    )
    assert [len(sub.bindings["values"]) for sub in expansion] == [2, 2, 2]
    assert expansion.labels("keys") == ["a", "b", "c"]


@pytest.mark.unit
def test_group_accepts_unhashable_keys():
    expansion = expand(
        _target("t", Group("values", by="keys"), "sum(values)"),
        _dims(values=[1, 2, 3], keys=[[0, 1], [0, 2], [0, 1]]),
    )
    assert [sub.bindings["keys"] for sub in expansion] == [[0, 1], [0, 2]]


@pytest.mark.unit
def test_group_keys_of_different_types_stay_apart():
    expansion = expand(
        _target("t", Group("values", by="keys"), "sum(values)"),
        _dims(values=[1, 2, 3, 4], keys=[1, "1", (0, 1), [0, 1]]),
    )
    assert [sub.bindings["keys"] for sub in expansion] == [1, "1", (0, 1), [0, 1]]


@pytest.mark.unit
def test_group_length_mismatch():
    with pytest.raises(LengthMismatchError):
        expand(
            _target("t", Group("values", by="keys"), "sum(values)"),
            _dims(values=[1, 2, 3], keys=["a", "b"]),
        )


@pytest.mark.unit
def test_trace_label_follows_traced_dimension():
    expansion = expand(
        _target("t", Map("x", "y", trace="y"), "add(x, y)"),
        _dims(x=[1, 2], y=[5, 6]),
    )
    assert [sub.label for sub in expansion] == [5, 6]
    assert expansion.labels("x") == [1, 2]


@pytest.mark.unit
def test_non_sequence_dimension_is_rejected():
    with pytest.raises(ExpansionError):
        Dimension.from_value("x", 42, owner="t")
    with pytest.raises(ExpansionError):
        Dimension.from_value("x", "text", owner="t")


@pytest.mark.unit
def test_branch_dimension_uses_branch_values():
    dim = Dimension.from_branches("x", [[1, 2], [3]], ["fp0", "fp1"])
    expansion = expand(_target("t", Map("x"), "sum(x)"), {"x": dim})
    assert [sub.bindings["x"] for sub in expansion] == [[1, 2], [3]]
    assert [sub.input_fingerprints["x"] for sub in expansion] == ["fp0", "fp1"]


@pytest.mark.unit
def test_missing_dimension_and_static_target():
    with pytest.raises(ExpansionError):
        expand(_target("t", Map("x", "y"), "add(x, y)"), _dims(x=[1]))
    with pytest.raises(ExpansionError):
        expand(_target("t", None), _dims(x=[1]))


@pytest.mark.unit
def test_expansion_fingerprint_tracks_structure_not_values():
    target = _target("t", Map("x"))
    first = expand(target, _dims(x=[1, 2, 3]))
    same_shape = expand(target, _dims(x=[4, 5, 6]))
    longer = expand(target, _dims(x=[1, 2, 3, 4]))
    assert first.fingerprint == same_shape.fingerprint
    assert first.fingerprint != longer.fingerprint
