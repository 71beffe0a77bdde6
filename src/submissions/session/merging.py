"""Data merging: folds a validated step payload into the accumulated session data.

Session data is kept per step (``{step_number: {field: value}}``) so the
resume view can show what each step contributed. The finalizer reads it
through ``flatten``, which resolves every field path to one value using the
same merge policies.

Both functions are pure: they never raise and never mutate their inputs.
"""

import copy
from dataclasses import dataclass

from submissions.definitions.registry import APPEND, OVERWRITE, UPSERT, FormTypeDefinition


@dataclass(frozen=True)
class FieldPolicy:
    merge: str = OVERWRITE
    row_key: str | None = None


def policies_for(definition: FormTypeDefinition) -> dict[str, FieldPolicy]:
    return {path: FieldPolicy(merge=rule.merge, row_key=rule.row_key) for path, rule in definition.rules().items()}


def _row_identity(row, row_key):
    if isinstance(row, dict) and row_key and row.get(row_key) is not None:
        return str(row[row_key])
    return None


def _upsert(existing: list, incoming: list, row_key: str | None) -> list:
    """Merge rows by key: same key replaces in place, new keys append, first-seen order kept."""
    merged: list = []
    positions: dict[str, int] = {}
    for row in list(existing or []) + list(incoming or []):
        identity = _row_identity(row, row_key)
        if identity is None:
            merged.append(row)
        elif identity in positions:
            merged[positions[identity]] = row
        else:
            positions[identity] = len(merged)
            merged.append(row)
    return merged


def _as_list(value) -> list:
    if value is None:
        return []
    return list(value) if isinstance(value, list | tuple) else [value]


def _combine(policy: FieldPolicy, current, incoming, replace: bool):
    if replace or policy.merge == OVERWRITE:
        return incoming
    if policy.merge == UPSERT:
        return _upsert(_as_list(current), _as_list(incoming), policy.row_key)
    if policy.merge == APPEND:
        return _as_list(current) + _as_list(incoming)
    return incoming


def merge(existing_data: dict, step_number: int, normalized_payload: dict, policies: dict, replace=()) -> dict:
    """Return new step data with ``normalized_payload`` merged into step ``step_number``."""
    merged = copy.deepcopy(existing_data or {})
    step = dict(merged.get(step_number) or {})

    for path, incoming in (normalized_payload or {}).items():
        policy = policies.get(path, FieldPolicy())
        if policy.merge == UPSERT:
            # Duplicate keys inside one payload collapse as well
            incoming = _upsert([], _as_list(incoming), policy.row_key)
        step[path] = copy.deepcopy(_combine(policy, step.get(path), incoming, path in replace))

    merged[step_number] = step
    return merged


def flatten(data: dict, policies: dict) -> dict:
    """Resolve step data into one mapping of field path → value, in step order."""
    resolved: dict = {}
    for step_number in sorted(data or {}):
        for path, value in (data[step_number] or {}).items():
            policy = policies.get(path, FieldPolicy())
            if path in resolved:
                value = _combine(policy, resolved[path], value, replace=False)
            elif policy.merge == UPSERT:
                value = _upsert([], _as_list(value), policy.row_key)
            resolved[path] = copy.deepcopy(value)
    return resolved
