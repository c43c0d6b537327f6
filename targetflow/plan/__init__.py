"""Plan representation package."""

from targetflow.plan.builder import PlanBuilder
from targetflow.plan.hash import combine_fingerprints, fingerprint_value, hash_payload, subtarget_key
from targetflow.plan.ir import Cross, Group, Map, Plan, Target, Transform

__all__ = [
    "Cross",
    "Group",
    "Map",
    "Plan",
    "PlanBuilder",
    "Target",
    "Transform",
    "combine_fingerprints",
    "fingerprint_value",
    "hash_payload",
    "subtarget_key",
]
