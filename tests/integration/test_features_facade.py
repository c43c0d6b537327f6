from __future__ import annotations

import json
from pathlib import Path

import pytest

from targetflow.features import FeatureRegistry

PROGRAM = """target data = [1, 2, 3]
target doubled = mul(data, 2) map(data) trace(data)
target total = sum(doubled)
"""


def _handler(name: str):
    feature = FeatureRegistry.get_feature(name)
    assert feature is not None
    return feature.handler


@pytest.mark.integration
def test_registered_features():
    assert set(FeatureRegistry.get_all_features()) == {
        "version",
        "run",
        "outdated",
        "read",
        "invalidate",
        "delete",
        "meta",
        "list_functions",
    }


@pytest.mark.integration
def test_version_feature_contract():
    result = _handler("version")()
    assert result.success is True
    assert "." in result.data["version"]


@pytest.mark.integration
def test_run_feature_executes_and_exports(tmp_path: Path):
    store = str(tmp_path / "store.db")
    json_path = tmp_path / "graph.json"
    dot_path = tmp_path / "graph.dot"
    syntax_path = tmp_path / "plan.txt"

    result = _handler("run")(
        program=PROGRAM,
        store=store,
        save_task_graph=str(dot_path),
        save_task_graph_as_json=str(json_path),
        save_syntax=str(syntax_path),
    )

    assert result.success is True, result.error
    assert result.data["targets"] == 3
    assert result.data["execution"]["success"] is True
    assert result.data["execution"]["cache_summary"]["computed"] == 6
    assert len(result.data["messages"]) == 3

    graph = json.loads(json_path.read_text())
    assert [sub["id"] for sub in graph["subtargets"]] == ["doubled[0]", "doubled[1]", "doubled[2]"]
    assert "digraph" in dot_path.read_text()
    assert syntax_path.read_text().splitlines()[1] == "target doubled = mul(data, 2) map(data) trace(data)"

    read = _handler("read")
    assert read(name="total", store=store).data["value"] == 12
    sub = read(name="doubled", index=1, store=store).data
    assert sub["value"] == 4 and sub["label"] == 2
    assert read(name="doubled", trace="data", store=store).data["labels"] == [1, 2, 3]

    assert _handler("outdated")(program=PROGRAM, store=store).data == {"outdated": {}}
    assert _handler("meta")(name="doubled", store=store).data["subtarget_count"] == 3

    warm_path = tmp_path / "warm.json"
    warm = _handler("run")(program=PROGRAM, store=store, save_task_graph_as_json=str(warm_path))
    assert warm.data["execution"]["cache_summary"]["computed"] == 0
    assert json.loads(warm_path.read_text())["subtargets"] == graph["subtargets"]


@pytest.mark.integration
def test_run_feature_without_execution_validates(tmp_path: Path):
    result = _handler("run")(program=PROGRAM, store=str(tmp_path / "s.db"), execute=False)
    assert result.success is True
    assert "execution" not in result.data

    broken = _handler("run")(program="target a = add(b, 1)", store=str(tmp_path / "s.db"), execute=False)
    assert broken.success is False
    assert "unknown target 'b'" in broken.error


@pytest.mark.integration
def test_run_feature_reports_failures(tmp_path: Path):
    result = _handler("run")(program="target a = fail()\ntarget b = add(a, 1)", store=str(tmp_path / "s.db"))
    assert result.success is False
    assert result.error == "Execution failed: 1 failed, 1 skipped"
    states = {status["key"]: status["state"] for status in result.data["execution"]["statuses"]}
    assert states == {"a": "failed", "b": "skipped"}


@pytest.mark.integration
def test_run_feature_no_cache_leaves_store_empty(tmp_path: Path):
    store = str(tmp_path / "s.db")
    assert _handler("run")(program=PROGRAM, store=store, no_cache=True).success
    missing = _handler("read")(name="total", store=store)
    assert missing.success is False
    assert "total" in missing.error


@pytest.mark.integration
def test_invalidate_and_delete_features(tmp_path: Path):
    store = str(tmp_path / "s.db")
    _handler("run")(program=PROGRAM, store=store)

    invalidated = _handler("invalidate")(names=["data", "nothing"], store=store)
    assert invalidated.data == {"invalidated": ["data"]}
    outdated = _handler("outdated")(program=PROGRAM, store=store).data["outdated"]
    assert list(outdated) == ["data", "doubled", "total"]

    deleted = _handler("delete")(names=["doubled"], store=store)
    assert deleted.data == {"deleted": {"doubled": 3}}
    assert _handler("meta")(name="doubled", store=store).success is False


@pytest.mark.integration
def test_list_functions_feature():
    result = _handler("list_functions")(namespace="operator", modules=["operator"])
    assert result.success is True
    assert "operator.add" in result.data["functions"]
    assert result.data["namespaces"] == ["default", "operator"]

    failed = _handler("list_functions")(modules=["not_a_real_module_anywhere"])
    assert failed.success is False
