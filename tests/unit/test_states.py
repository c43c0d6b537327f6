from __future__ import annotations

import pytest

from targetflow.errors import IllegalTransitionError
from targetflow.execution_strategy import (
    DaskExecutionStrategy,
    NodeState,
    NodeStatus,
    RunReport,
    SequentialExecutionStrategy,
    WorkUnit,
    create_strategy,
)


@pytest.mark.unit
def test_legal_lifecycle():
    status = NodeStatus("t")
    for state in (NodeState.READY, NodeState.RUNNING, NodeState.DONE):
        status.transition(state)
    assert status.terminal


@pytest.mark.unit
@pytest.mark.parametrize(
    "path",
    [
        (NodeState.RUNNING,),
        (NodeState.DONE,),
        (NodeState.READY, NodeState.SKIPPED),
        (NodeState.SKIPPED, NodeState.READY),
        (NodeState.READY, NodeState.RUNNING, NodeState.DONE, NodeState.FAILED),
    ],
)
def test_illegal_transitions_raise(path):
    status = NodeStatus("t", index=2)
    with pytest.raises(IllegalTransitionError) as excinfo:
        for state in path:
            status.transition(state)
    assert excinfo.value.node == "t[2]"


@pytest.mark.unit
def test_report_summaries():
    report = RunReport(strategy="sequential")
    done = report.add(NodeStatus("a", state=NodeState.DONE))
    report.add(NodeStatus("b", state=NodeState.DONE, cached=True))
    report.add(NodeStatus("c", index=0, state=NodeState.FAILED, error="boom"))
    report.add(NodeStatus("c", state=NodeState.FAILED, error="1 sub-target failed"))
    report.add(NodeStatus("d", state=NodeState.SKIPPED, reason="dependency 'c' failed"))

    assert report.status("a") is done
    assert report.state("c", 0) == NodeState.FAILED
    assert report.done == ["a", "b"]
    assert report.skipped == ["d"]
    assert report.failed == {"c[0]": "boom", "c": "1 sub-target failed"}
    assert not report.success
    assert report.cache_summary == {"computed": 1, "cached": 1, "failed": 2, "skipped": 1}
    assert [status.key for status in report.subtarget_statuses("c")] == ["c[0]"]

    payload = report.to_dict()
    assert payload["success"] is False
    assert [item["state"] for item in payload["statuses"]] == ["done", "done", "failed", "failed", "skipped"]


@pytest.mark.unit
@pytest.mark.parametrize("strategy", [SequentialExecutionStrategy(), DaskExecutionStrategy()])
def test_strategies_keep_submission_order_and_capture_errors(strategy):
    def boom():
        raise ValueError("bad unit")

    units = [WorkUnit(f"u{i}", (lambda i=i: i * i)) for i in range(5)]
    units.insert(2, WorkUnit("broken", boom))
    outcomes = strategy.execute(units)

    assert [outcome.key for outcome in outcomes] == [unit.key for unit in units]
    assert [outcome.value for outcome in outcomes if outcome.ok] == [0, 1, 4, 9, 16]
    failed = [outcome for outcome in outcomes if not outcome.ok]
    assert len(failed) == 1
    assert isinstance(failed[0].error, ValueError)


@pytest.mark.unit
def test_create_strategy():
    assert create_strategy("sequential").name == "sequential"
    dask_strategy = create_strategy("dask", scheduler="synchronous", num_workers=2)
    assert isinstance(dask_strategy, DaskExecutionStrategy)
    assert dask_strategy.scheduler == "synchronous"
    with pytest.raises(ValueError):
        create_strategy("cluster")
    assert DaskExecutionStrategy().execute([]) == []
