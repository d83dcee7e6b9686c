"""Two-way strategic merge patches for pod documents.

Maps merge recursively, scalars and plain lists are replaced, and lists
that carry a merge key are merged item by item so that entries added
concurrently on the server are preserved.
"""
from __future__ import annotations

import copy
from typing import Any

from .errors import DiffComputationFailure

DELETE_DIRECTIVE = "$patch"

# field name -> merge key, as declared by the core/v1 API types
MERGE_KEYS: dict[str, str] = {
    "containers": "name",
    "initContainers": "name",
    "ephemeralContainers": "name",
    "volumes": "name",
    "env": "name",
    "imagePullSecrets": "name",
    "volumeMounts": "mountPath",
    "ports": "containerPort",
    "conditions": "type",
    "ownerReferences": "uid",
}


def create_two_way_merge_patch(
    original: dict[str, Any], modified: dict[str, Any], merge_keys: dict[str, str] | None = None
) -> dict[str, Any]:
    """Return the patch that turns ``original`` into ``modified``."""
    keys = MERGE_KEYS if merge_keys is None else merge_keys
    return _diff_maps(original, modified, keys, "")


def _diff_maps(original: dict[str, Any], modified: dict[str, Any], keys: dict[str, str], path: str) -> dict[str, Any]:
    patch: dict[str, Any] = {}
    for field in original:
        if field not in modified:
            patch[field] = None
    for field, new in modified.items():
        old = original.get(field)
        if field in original and old == new:
            continue
        where = f"{path}.{field}" if path else field
        if isinstance(old, dict) and isinstance(new, dict):
            sub = _diff_maps(old, new, keys, where)
            if sub:
                patch[field] = sub
        elif isinstance(old, list) and isinstance(new, list) and field in keys:
            items = _diff_lists(old, new, keys[field], keys, where)
            if items:
                patch[field] = items
        else:
            patch[field] = copy.deepcopy(new)
    return patch


def _index(items: list[Any], merge_key: str, path: str) -> dict[Any, dict[str, Any]]:
    out: dict[Any, dict[str, Any]] = {}
    for item in items:
        if not isinstance(item, dict) or merge_key not in item:
            raise DiffComputationFailure(f"{path}: list item without merge key '{merge_key}': {item!r}")
        out[item[merge_key]] = item
    return out


def _diff_lists(
    old: list[Any], new: list[Any], merge_key: str, keys: dict[str, str], path: str
) -> list[dict[str, Any]]:
    before = _index(old, merge_key, path)
    after = _index(new, merge_key, path)
    out: list[dict[str, Any]] = []
    for k, item in after.items():
        prev = before.get(k)
        if prev is None:
            out.append(copy.deepcopy(item))
        elif prev != item:
            sub = _diff_maps(prev, item, keys, f"{path}[{k}]")
            out.append({merge_key: k, **sub})
    for k in before:
        if k not in after:
            out.append({merge_key: k, DELETE_DIRECTIVE: "delete"})
    return out


def apply_strategic_merge_patch(
    document: dict[str, Any], patch: dict[str, Any], merge_keys: dict[str, str] | None = None
) -> dict[str, Any]:
    """Apply ``patch`` to a copy of ``document`` and return the result."""
    keys = MERGE_KEYS if merge_keys is None else merge_keys
    return _apply_map(document, patch, keys)


def _apply_map(document: dict[str, Any], patch: dict[str, Any], keys: dict[str, str]) -> dict[str, Any]:
    result = copy.deepcopy(document)
    for field, value in patch.items():
        current = result.get(field)
        if value is None:
            result.pop(field, None)
        elif isinstance(value, dict) and isinstance(current, dict):
            result[field] = _apply_map(current, value, keys)
        elif isinstance(value, list) and isinstance(current, list) and field in keys:
            result[field] = _apply_list(current, value, keys[field], keys)
        else:
            result[field] = copy.deepcopy(value)
    return result


def _apply_list(current: list[Any], patch: list[Any], merge_key: str, keys: dict[str, str]) -> list[Any]:
    result = copy.deepcopy(current)
    for item in patch:
        k = item.get(merge_key)
        pos = next((i for i, x in enumerate(result) if isinstance(x, dict) and x.get(merge_key) == k), None)
        if item.get(DELETE_DIRECTIVE) == "delete":
            if pos is not None:
                del result[pos]
        elif pos is None:
            result.append(copy.deepcopy(item))
        else:
            result[pos] = _apply_map(result[pos], item, keys)
    return result
