"""Deterministic fingerprints for commands, values and expansions."""

from __future__ import annotations

from dataclasses import is_dataclass, fields
from typing import Any, Iterable
import hashlib
import pickle

import canonicaljson


def _normalize_value(value: Any) -> Any:
    if hasattr(value, "to_syntax") and callable(value.to_syntax):
        return value.to_syntax()

    if is_dataclass(value) and not isinstance(value, type):
        return {field.name: _normalize_value(getattr(value, field.name)) for field in fields(value)}

    if isinstance(value, dict):
        if all(isinstance(k, str) for k in value):
            return {k: _normalize_value(v) for k, v in value.items()}
        # Keys keep their type: {1: x} and {"1": x} differ
        pairs = [[_normalize_value(k), _normalize_value(v)] for k, v in value.items()]
        return {"__dict__": sorted(pairs, key=lambda pair: canonicaljson.encode_canonical_json(pair[0]))}

    if isinstance(value, (set, frozenset)):
        items = [_normalize_value(item) for item in value]
        return sorted(items, key=lambda item: canonicaljson.encode_canonical_json(item))

    if isinstance(value, tuple):
        return {"__tuple__": [_normalize_value(item) for item in value]}

    if isinstance(value, (list, range)):
        return [_normalize_value(item) for item in value]

    return value


def hash_payload(payload: Any) -> str:
    """Hash a JSON-compatible payload through its canonical encoding."""
    canonical = canonicaljson.encode_canonical_json(_normalize_value(payload))
    return hashlib.sha256(canonical).hexdigest()


def fingerprint_value(value: Any) -> str:
    """Content fingerprint of an arbitrary result value.

    JSON-compatible values hash through their canonical JSON form so that
    equal values fingerprint equally across processes. Everything else falls
    back to the pickle byte stream, then to ``repr``.
    """
    try:
        return hash_payload({"kind": "json", "value": value})
    except (TypeError, ValueError):
        pass
    try:
        data = pickle.dumps(value)
    except (pickle.PicklingError, TypeError, AttributeError):
        data = repr(value).encode("utf-8")
        return hashlib.sha256(b"repr:" + data).hexdigest()
    return hashlib.sha256(b"pickle:" + data).hexdigest()


def combine_fingerprints(kind: str, parts: Iterable[Any]) -> str:
    """Fingerprint an ordered collection of already computed fingerprints."""
    return hash_payload({"kind": kind, "parts": list(parts)})


def subtarget_key(name: str, index: int) -> str:
    """Display key of one sub-target in reports and graph exports."""
    return f"{name}[{int(index)}]"
