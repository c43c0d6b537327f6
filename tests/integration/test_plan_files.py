from __future__ import annotations

import json
from pathlib import Path

import pytest

from targetflow import load_plan
from targetflow.converters import to_dot, to_json
from targetflow.errors import InvalidTransformError, PlanSyntaxError, UnknownFormatError

EXAMPLE_PLAN = """// comment
import "statistics"
target data = range(1, 7)
target keys = ["a", "a", "b", "b", "c", "c"]
target doubled = mul(data, 2) map(data) trace(data)
target pairs = pair(data, keys) cross(data, keys)
target sums = sum(data) group(data, by = keys)
target total = sum(doubled) format "vector" cue "always"
target middle = statistics.median(data)
"""


@pytest.fixture
def example_plan(tmp_path: Path):
    path = tmp_path / "example.plan"
    path.write_text(EXAMPLE_PLAN)
    return load_plan(path)


@pytest.mark.integration
def test_example_plan_runs(engine, example_plan):
    report = engine.run(example_plan)

    assert report.success
    assert engine.read_one("data") == [1, 2, 3, 4, 5, 6]
    assert engine.read_one("doubled") == [2, 4, 6, 8, 10, 12]
    assert engine.read_trace("data", "doubled") == [1, 2, 3, 4, 5, 6]
    assert report.status("pairs").subtargets == 36
    assert engine.read_subtarget("pairs", 1) == [1, "a"]
    assert engine.read_one("sums") == [3, 7, 11]
    assert engine.read_trace("keys", "sums") == ["a", "b", "c"]
    assert engine.read_one("total") == 42
    assert engine.read_one("middle") == 3.5


@pytest.mark.integration
def test_example_plan_second_run_only_reruns_always_cue(engine, example_plan):
    engine.run(example_plan)
    report = engine.run(example_plan)

    computed = [status.key for status in report.statuses.values() if not status.cached]
    assert computed == ["total"]


@pytest.mark.integration
def test_example_plan_graph_exports(engine, example_plan):
    engine.run(example_plan)

    graph = to_json(example_plan, engine.expansions)
    assert graph["imports"] == ["statistics"]
    assert [node["id"] for node in graph["nodes"]][:3] == ["data", "keys", "doubled"]
    assert {"source": "keys", "target": "sums"} in graph["edges"]
    sums = [node for node in graph["nodes"] if node["id"] == "sums"][0]
    assert sums["transform"] == {"kind": "group", "dims": ["data"], "by": "keys"}
    doubled_subs = [sub for sub in graph["subtargets"] if sub["target"] == "doubled"]
    assert [sub["label"] for sub in doubled_subs] == [1, 2, 3, 4, 5, 6]
    json.dumps(graph)

    dot = to_dot(example_plan, engine.expansions)
    assert dot.startswith("digraph {")
    assert '"data" -> "doubled";' in dot
    assert '"doubled[0]" -> "doubled" [style=dashed];' in dot
    assert 'shape=box3d' in dot


@pytest.mark.integration
def test_plan_round_trips_through_syntax(tmp_path: Path, example_plan):
    path = tmp_path / "again.plan"
    path.write_text(example_plan.to_syntax())
    again = load_plan(path)
    assert again.to_syntax() == example_plan.to_syntax()
    assert again.names == example_plan.names


@pytest.mark.integration
def test_invalid_plans(engine, reduce_from_text):
    with pytest.raises(PlanSyntaxError):
        reduce_from_text("target a = add(1,")
    with pytest.raises(InvalidTransformError):
        reduce_from_text("target a = [1]\ntarget b = identity(a) map(a) cross(a)")
    with pytest.raises(InvalidTransformError):
        reduce_from_text("target a = [1]\ntarget b = identity(a) trace(a)")
    with pytest.raises(UnknownFormatError):
        engine.run(reduce_from_text('target a = [1] format "parquet"'))
