from __future__ import annotations

import pytest

from targetflow import invalidation
from targetflow.invalidation import (
    InvalidationTracker,
    check_expansion,
    check_subtarget,
    check_target,
    subtarget_input_fingerprint,
)
from targetflow.commands import as_command
from targetflow.plan import Map, PlanBuilder, Target
from targetflow.storage import TargetRecord


def _target(name="t", command="1", **kwargs):
    return Target(name=name, command=as_command(command), **kwargs)


def _built(store, target, deps=None, value=1):
    store.write(target.name, None, value)
    record = TargetRecord(
        name=target.name,
        command_fingerprint=target.command.fingerprint(),
        dependency_fingerprints=dict(deps or {}),
        value_fingerprint=f"value-of-{target.name}",
        format=target.format,
    )
    store.set_record(record)
    return record


@pytest.mark.unit
def test_never_built_target_is_stale(store):
    target = _target()
    result = check_target(target, None, target.command.fingerprint(), {}, store)
    assert not result
    assert result.reason == invalidation.NEVER_BUILT


@pytest.mark.unit
def test_recorded_target_is_fresh(store):
    target = _target()
    record = _built(store, target)
    result = check_target(target, record, target.command.fingerprint(), {}, store)
    assert result.fresh
    assert result.reason == invalidation.UP_TO_DATE


@pytest.mark.unit
@pytest.mark.parametrize(
    "change, reason",
    [
        ("command", invalidation.COMMAND_CHANGED),
        ("dependency", invalidation.DEPENDENCY_CHANGED),
        ("format", invalidation.FORMAT_CHANGED),
        ("entry", invalidation.MISSING_ENTRY),
    ],
)
def test_stale_reasons(store, change, reason):
    target = _target(command="add(a, 1)")
    record = _built(store, target, deps={"a": "fa"})
    command_fp = target.command.fingerprint()
    deps = {"a": "fa"}
    if change == "command":
        command_fp = as_command("add(a, 2)").fingerprint()
    elif change == "dependency":
        deps = {"a": "fb"}
    elif change == "format":
        target = _target(command="add(a, 1)", format="list")
    elif change == "entry":
        store.remove("t", None)
    result = check_target(target, record, command_fp, deps, store)
    assert result.reason == reason
    assert not result.fresh


@pytest.mark.unit
def test_cues(store):
    always = _target(cue="always")
    record = _built(store, always)
    assert check_target(always, record, always.command.fingerprint(), {}, store).reason == invalidation.CUE_ALWAYS

    never = _target(cue="never")
    assert check_target(never, record, "other-command", {"x": "y"}, store).reason == invalidation.CUE_NEVER
    store.remove("t", None)
    assert check_target(never, record, "other-command", {}, store).reason == invalidation.COMMAND_CHANGED


@pytest.mark.unit
def test_dynamic_target_needs_every_subtarget_entry(store):
    target = _target(command="identity(x)", transform=Map("x"))
    record = TargetRecord(
        name="t",
        command_fingerprint=target.command.fingerprint(),
        dependency_fingerprints={"x": "fx"},
        value_fingerprint="agg",
        dynamic=True,
        subtarget_count=2,
    )
    store.set_record(record)
    store.write("t", 0, 1)
    fp = target.command.fingerprint()
    assert check_target(target, record, fp, {"x": "fx"}, store).reason == invalidation.MISSING_ENTRY
    store.write("t", 1, 2)
    assert check_target(target, record, fp, {"x": "fx"}, store).fresh


@pytest.mark.unit
def test_expansion_check():
    record = TargetRecord(
        name="t",
        command_fingerprint="c",
        dependency_fingerprints={},
        value_fingerprint="v",
        dynamic=True,
        expansion_fingerprint="shape-a",
    )
    assert check_expansion(record, "shape-a").fresh
    assert check_expansion(record, "shape-b").reason == invalidation.EXPANSION_CHANGED
    assert check_expansion(None, "shape-a").reason == invalidation.NEVER_BUILT


@pytest.mark.unit
def test_subtarget_freshness_compares_input_fingerprint(store):
    target = _target(command="identity(x)", transform=Map("x"))
    fp = subtarget_input_fingerprint("cmd", {"x": "e0"}, {}, "vector")
    assert check_subtarget(target, 0, fp, store).reason == invalidation.MISSING_ENTRY
    store.write("t", 0, 5, input_fingerprint=fp)
    assert check_subtarget(target, 0, fp, store).fresh
    other = subtarget_input_fingerprint("cmd", {"x": "e1"}, {}, "vector")
    assert check_subtarget(target, 0, other, store).reason == invalidation.DEPENDENCY_CHANGED
    assert store.clear_input_fingerprints("t") == 1
    assert check_subtarget(target, 0, fp, store).reason == invalidation.NEVER_BUILT



@pytest.mark.unit
def test_subtarget_input_fingerprint_ignores_mapping_order():
    left = subtarget_input_fingerprint("c", {"a": "1", "b": "2"}, {"z": "9"}, "vector")
    right = subtarget_input_fingerprint("c", {"b": "2", "a": "1"}, {"z": "9"}, "vector")
    assert left == right
    assert left != subtarget_input_fingerprint("c", {"a": "1", "b": "2"}, {"z": "9"}, "list")


@pytest.mark.unit
def test_outdated_propagates_downstream(store):
    plan = (
        PlanBuilder()
        .target("a", "1")
        .target("b", "add(a, 1)")
        .target("c", "2")
        .to_plan()
    )
    tracker = InvalidationTracker(store)
    assert dict(tracker.outdated(plan)) == {
        "a": invalidation.NEVER_BUILT,
        "b": invalidation.DEPENDENCY_CHANGED,
        "c": invalidation.NEVER_BUILT,
    }

    a, b, c = plan.get("a"), plan.get("b"), plan.get("c")
    _built(store, a)
    _built(store, b, deps={"a": "value-of-a"})
    _built(store, c)
    assert dict(invalidation.outdated(plan, store)) == {}

    assert tracker.invalidate("a") is True
    assert tracker.invalidate("a") is False
    assert list(tracker.outdated(plan)) == ["a", "b"]
