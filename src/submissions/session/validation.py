"""Step validation: pure checks of one step payload against its field rules.

The validator never touches the session store. Apart from referential
``exists`` rules (answered by the reference-data port) it is a function of
its arguments, and it reports every violation at once, in the order the
rules are declared, so a client can fix the whole step in one round trip.
"""

import math
from dataclasses import dataclass, field

from submissions.definitions.registry import FieldRule, FormTypeDefinition
from submissions.session.errors import FieldError, OutOfOrderStep

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")

REPLACE_SUFFIX = "__replace"
REPLACE_KEY = "replace"


@dataclass(frozen=True)
class Valid:
    data: dict
    replaced: tuple[str, ...] = ()
    uploads: tuple = ()
    is_valid: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Invalid:
    errors: tuple[FieldError, ...]
    is_valid: bool = field(default=False, init=False)


class _Missing:
    pass


MISSING = _Missing()


def _is_blank(value) -> bool:
    if value is None or value is MISSING:
        return True
    return (isinstance(value, str) and not value.strip()) or (isinstance(value, list) and not value)


def _label(path: str) -> str:
    return path.replace("_", " ")


# ---------------------------------------------------------------------------
# Coercion: returns (value, error message or None)
# ---------------------------------------------------------------------------
def _coerce(rule: FieldRule, path: str, value):
    kind = rule.kind
    name = _label(path)

    if kind == "string":
        if not isinstance(value, str):
            return None, f"The {name} must be a string."
        return value.strip(), None

    if kind == "integer":
        if isinstance(value, bool):
            return None, f"The {name} must be an integer."
        if isinstance(value, int):
            return value, None
        if isinstance(value, float) and value.is_integer():
            return int(value), None
        if isinstance(value, str):
            try:
                return int(value.strip()), None
            except ValueError:
                pass
        return None, f"The {name} must be an integer."

    if kind == "numeric":
        if isinstance(value, bool):
            return None, f"The {name} must be a number."
        if isinstance(value, int):
            return value, None
        if isinstance(value, float):
            return (value, None) if math.isfinite(value) else (None, f"The {name} must be a number.")
        if isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                return None, f"The {name} must be a number."
            if not math.isfinite(number):
                return None, f"The {name} must be a number."
            return int(number) if number.is_integer() and "." not in value else number, None
        return None, f"The {name} must be a number."

    if kind == "boolean":
        if isinstance(value, bool):
            return value, None
        if isinstance(value, int) and value in (0, 1):
            return bool(value), None
        if isinstance(value, str) and value.strip().lower() in _TRUE + _FALSE:
            return value.strip().lower() in _TRUE, None
        return None, f"The {name} field must be true or false."

    if kind in ("array", "rows"):
        if not isinstance(value, list):
            return None, f"The {name} must be an array."
        return value, None

    return value, None


def _bounds(rule: FieldRule, path: str, value) -> list[str]:
    """Apply min/max: string length, numeric value, or item count."""
    name = _label(path)
    messages = []

    if rule.kind == "boolean":
        return messages
    if rule.kind == "string":
        measure, unit = len(value), " characters"
    elif rule.kind in ("integer", "numeric"):
        measure, unit = value, ""
    else:
        measure, unit = len(value), " items"

    if rule.minimum is not None and measure < rule.minimum:
        messages.append(f"The {name} must be at least {rule.minimum}{unit}.")
    if rule.maximum is not None and measure > rule.maximum:
        messages.append(f"The {name} may not be greater than {rule.maximum}{unit}.")
    return messages


def _check_scalar(rule: FieldRule, path: str, raw, reference_data, errors: list) -> object:
    """Validate one non-file value. Appends errors; returns the normalized value."""
    value, message = _coerce(rule, path, raw)
    if message:
        errors.append(FieldError(path, message))
        return None

    found = False
    for message in _bounds(rule, path, value):
        errors.append(FieldError(path, message))
        found = True

    if rule.choices and str(value) not in rule.choices:
        errors.append(FieldError(path, f"The selected {_label(path)} is invalid."))
        found = True

    if rule.exists and not found and reference_data is not None and not reference_data.exists(rule.exists, value):
        errors.append(FieldError(path, f"The selected {_label(path)} is invalid."))

    return value


def _check_missing(rule: FieldRule, path: str, present: bool, errors: list):
    """Handle an absent or blank value. Returns (keep, value)."""
    if rule.nullable and present:
        return True, None
    if rule.required:
        errors.append(FieldError(path, f"The {_label(path)} field is required."))
    return False, None


def _check_rows(rule: FieldRule, path: str, rows: list, reference_data, errors: list) -> list[dict]:
    normalized = []
    for index, row in enumerate(rows):
        row_path = f"{path}.{index}"
        if not isinstance(row, dict):
            errors.append(FieldError(row_path, f"The {_label(path)} entry {index} must be an object."))
            continue

        clean = {}
        for column in rule.columns:
            column_path = f"{row_path}.{column.path}"
            raw = row.get(column.path, MISSING)
            if _is_blank(raw):
                keep, value = _check_missing(column, column_path, column.path in row, errors)
                if keep:
                    clean[column.path] = value
                continue
            clean[column.path] = _check_scalar(column, column_path, raw, reference_data, errors)
        normalized.append(clean)
    return normalized


def _check_files(rule: FieldRule, path: str, uploads, existing_count: int, replace: bool, errors: list):
    name = _label(path)
    counted = len(uploads) + (0 if replace else existing_count)

    if counted == 0:
        if rule.required:
            errors.append(FieldError(path, f"The {name} field is required."))
        return

    if rule.kind == "file" and len(uploads) > 1:
        errors.append(FieldError(path, f"The {name} must be a single file."))
    if rule.kind == "files":
        if rule.minimum is not None and counted < rule.minimum:
            errors.append(FieldError(path, f"The {name} must have at least {rule.minimum} files."))
        if rule.maximum is not None and counted > rule.maximum:
            errors.append(FieldError(path, f"The {name} may not have more than {rule.maximum} files."))

    for index, upload in enumerate(uploads):
        item = path if rule.kind == "file" else f"{path}.{index}"
        if rule.max_kb is not None and upload.size_bytes > rule.max_kb * 1024:
            errors.append(FieldError(item, f"The {_label(item)} may not be greater than {rule.max_kb} kilobytes."))
        if rule.mimes and upload.content_type not in rule.mimes:
            errors.append(FieldError(item, f"The {_label(item)} must be a file of type: {', '.join(rule.mimes)}."))


def replace_directives(payload: dict) -> set[str]:
    """Fields the client asked to replace rather than accumulate."""
    fields = {
        key.removesuffix(REPLACE_SUFFIX)
        for key, value in payload.items()
        if key.endswith(REPLACE_SUFFIX) and value in (True, "true", "1")
    }
    listed = payload.get(REPLACE_KEY)
    if isinstance(listed, list):
        fields.update(str(f) for f in listed)
    elif isinstance(listed, str):
        fields.add(listed)
    return fields


def file_descriptor(upload) -> dict:
    return {
        "original_name": upload.original_name,
        "content_type": upload.content_type,
        "size_bytes": upload.size_bytes,
        "content_hash": upload.content_hash,
        "storage_ref": upload.storage_ref,
    }


def validate_step(
    definition: FormTypeDefinition,
    current_step: int,
    step_number: int,
    payload: dict | None,
    uploads=(),
    existing_files=(),
    reference_data=None,
):
    """Validate one step submission.

    Raises UnknownStep for a step the form type does not declare and
    OutOfOrderStep unless ``step_number`` is ``current_step + 1``. Returns
    ``Valid`` with the normalized payload (unknown fields dropped, values
    coerced, file fields as lists of descriptors) or ``Invalid`` with every
    field error.
    """
    step = definition.step(step_number)
    if step_number != current_step + 1:
        raise OutOfOrderStep(step_number, current_step + 1)

    payload = payload if isinstance(payload, dict) else {}
    replace = replace_directives(payload)
    errors: list[FieldError] = []
    data: dict = {}
    accepted_uploads = []

    for rule in step.rules:
        path = rule.path

        if rule.is_file:
            mine = [u for u in uploads if u.field == path]
            existing = [f for f in existing_files if f.field_name == path]
            replacing = path in replace or (rule.kind == "file" and bool(mine))
            _check_files(rule, path, mine, len(existing), replacing, errors)
            if mine:
                accepted_uploads.extend(mine)
                descriptors = [file_descriptor(u) for u in mine]
                data[path] = descriptors[0] if rule.kind == "file" else descriptors
            continue

        raw = payload.get(path, MISSING)
        if _is_blank(raw):
            keep, value = _check_missing(rule, path, path in payload, errors)
            if keep:
                data[path] = value
            continue

        if rule.kind == "rows":
            value, message = _coerce(rule, path, raw)
            if message:
                errors.append(FieldError(path, message))
                continue
            for message in _bounds(rule, path, value):
                errors.append(FieldError(path, message))
            data[path] = _check_rows(rule, path, value, reference_data, errors)
            continue

        data[path] = _check_scalar(rule, path, raw, reference_data, errors)

    if errors:
        return Invalid(errors=tuple(errors))

    replaced = tuple(r.path for r in step.rules if r.path in replace or (r.kind == "file" and r.path in data))
    return Valid(data=data, replaced=replaced, uploads=tuple(accepted_uploads))
