from __future__ import annotations

import pytest

from targetflow.formats import get_format, has_format, is_sequence, list_formats, register_format


@pytest.mark.unit
def test_builtin_formats():
    assert {"vector", "list"} <= set(list_formats())
    vector = get_format("vector")
    assert vector.aggregate([[1, 2], 3, (4,)]) == [1, 2, 3, 4]
    assert vector.contributes([1, 2]) == 2
    assert vector.contributes(7) == 1
    assert get_format("list").aggregate([[1, 2], 3]) == [[1, 2], 3]
    assert get_format("list").contributes([1, 2]) == 1


@pytest.mark.unit
def test_vector_keeps_text_whole():
    assert get_format("vector").aggregate(["ab", "cd"]) == ["ab", "cd"]


@pytest.mark.unit
def test_register_custom_format():
    fmt = register_format("joined", lambda values: "".join(values))
    assert has_format("joined")
    assert get_format("joined") is fmt
    assert fmt.aggregate(["a", "b"]) == "ab"
    assert fmt.contributes("anything") == 1


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, expected",
    [([1], True), ((1,), True), (range(3), True), ("abc", False), (b"ab", False), ({"a": 1}, False), (5, False)],
)
def test_is_sequence(value, expected):
    assert is_sequence(value) is expected
