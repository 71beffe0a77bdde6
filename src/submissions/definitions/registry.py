"""Typed form-type definitions loaded once from configuration.

A form type is a fixed, linear sequence of steps. Each step declares the
fields it accepts with a compact rule expression::

    name = "required|string|max:255"
    subcategory_id = "required|integer|exists:subcategories"
    images = "required|files|min:1|max_kb:2048|mimes:image/jpeg,image/png"

Repeated-row fields are declared as a table with a ``rule`` plus the row key
and the rules for each column::

    [product_form.steps.2.fields.attributes]
    rule = "required|rows|min:1"
    row_key = "attribute_id"
    columns = { attribute_id = "required|integer|exists:attributes", value_id = "required|integer|exists:attribute_values" }
"""

import tomllib
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from submissions.session.errors import FormConfigurationError, UnknownFormType, UnknownStep

FIELD_TYPES = ("string", "integer", "numeric", "boolean", "array", "rows", "file", "files")
FILE_TYPES = ("file", "files")

OVERWRITE = "overwrite"
UPSERT = "upsert"
APPEND = "append"
MERGE_POLICIES = (OVERWRITE, UPSERT, APPEND)

_FLAGS = ("required", "nullable")
_VALUED = ("min", "max", "max_kb", "in", "mimes", "exists", "merge")


@dataclass(frozen=True)
class FieldRule:
    path: str
    kind: str = "string"
    required: bool = False
    nullable: bool = False
    minimum: float | None = None
    maximum: float | None = None
    max_kb: int | None = None
    choices: tuple[str, ...] = ()
    mimes: tuple[str, ...] = ()
    exists: str | None = None
    row_key: str | None = None
    columns: tuple["FieldRule", ...] = ()
    merge: str = OVERWRITE

    @property
    def is_file(self) -> bool:
        return self.kind in FILE_TYPES


@dataclass(frozen=True)
class StepDefinition:
    number: int
    label: str
    description: str = ""
    rules: tuple[FieldRule, ...] = ()

    def rule_for(self, path: str) -> FieldRule | None:
        return next((r for r in self.rules if r.path == path), None)

    @property
    def file_fields(self) -> tuple[str, ...]:
        return tuple(r.path for r in self.rules if r.is_file)


@dataclass(frozen=True)
class FormTypeDefinition:
    form_type: str
    total_steps: int
    ttl: timedelta
    entity_kind: str
    steps: dict[int, StepDefinition] = field(default_factory=dict)

    def step(self, number: int) -> StepDefinition:
        try:
            return self.steps[number]
        except KeyError:
            raise UnknownStep(self.form_type, number) from None

    def has_step(self, number: int) -> bool:
        return number in self.steps

    def rules(self) -> dict[str, FieldRule]:
        """Every field rule across all steps, keyed by field path (later steps win)."""
        merged: dict[str, FieldRule] = {}
        for number in sorted(self.steps):
            for rule in self.steps[number].rules:
                merged[rule.path] = rule
        return merged

    def describe(self) -> list[dict]:
        return [
            {"number": s.number, "label": s.label, "description": s.description}
            for _, s in sorted(self.steps.items())
        ]


# ---------------------------------------------------------------------------
# Rule expression parsing
# ---------------------------------------------------------------------------
def _number(path: str, token: str, raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise FormConfigurationError(f"Rule '{token}' for '{path}' needs a number, got '{raw}'") from None
    return int(value) if value.is_integer() else value


def parse_rule(path: str, expression: str, row_key: str | None = None, columns: dict | None = None) -> FieldRule:
    """Parse a pipe-separated rule expression into a FieldRule."""
    options: dict = {"kind": "string"}
    merge = None

    for token in (t.strip() for t in expression.split("|")):
        if not token:
            continue
        name, _, argument = token.partition(":")
        if name in _FLAGS:
            options[name] = True
        elif name in FIELD_TYPES:
            options["kind"] = name
        elif name not in _VALUED or not argument:
            raise FormConfigurationError(f"Unknown rule '{token}' for field '{path}'")
        elif name == "min":
            options["minimum"] = _number(path, token, argument)
        elif name == "max":
            options["maximum"] = _number(path, token, argument)
        elif name == "max_kb":
            options["max_kb"] = int(_number(path, token, argument))
        elif name == "in":
            options["choices"] = tuple(c.strip() for c in argument.split(","))
        elif name == "mimes":
            options["mimes"] = tuple(m.strip() for m in argument.split(","))
        elif name == "exists":
            options["exists"] = argument
        elif name == "merge":
            if argument not in MERGE_POLICIES:
                raise FormConfigurationError(f"Unknown merge policy '{argument}' for field '{path}'")
            merge = argument

    kind = options["kind"]
    if kind == "rows":
        if not row_key:
            raise FormConfigurationError(f"Rows field '{path}' must declare a row_key")
        options["row_key"] = row_key
        options["columns"] = tuple(parse_rule(name, rule) for name, rule in (columns or {}).items())
        if row_key not in {c.path for c in options["columns"]}:
            raise FormConfigurationError(f"Row key '{row_key}' of '{path}' must be one of its columns")

    if merge is None:
        merge = {"rows": UPSERT, "files": APPEND}.get(kind, OVERWRITE)

    return FieldRule(path=path, merge=merge, **options)


def _parse_step(form_type: str, number: int, raw: dict) -> StepDefinition:
    rules = []
    for path, spec in (raw.get("fields") or {}).items():
        if isinstance(spec, str):
            rules.append(parse_rule(path, spec))
        elif isinstance(spec, dict) and "rule" in spec:
            rules.append(parse_rule(path, spec["rule"], spec.get("row_key"), spec.get("columns")))
        else:
            raise FormConfigurationError(f"Field '{path}' of {form_type} step {number} has no rule")

    return StepDefinition(
        number=number,
        label=raw.get("label", f"Step {number}"),
        description=raw.get("description", ""),
        rules=tuple(rules),
    )


def parse_form_type(form_type: str, raw: dict) -> FormTypeDefinition:
    try:
        total_steps = int(raw["total_steps"])
    except (KeyError, TypeError, ValueError):
        raise FormConfigurationError(f"Form type '{form_type}' must declare total_steps") from None
    if total_steps < 1:
        raise FormConfigurationError(f"Form type '{form_type}' needs at least one step")

    raw_steps = raw.get("steps") or {}
    steps = {int(number): _parse_step(form_type, int(number), spec) for number, spec in raw_steps.items()}
    if sorted(steps) != list(range(1, total_steps + 1)):
        raise FormConfigurationError(
            f"Form type '{form_type}' declares {total_steps} steps but defines steps {sorted(steps)}"
        )

    return FormTypeDefinition(
        form_type=form_type,
        total_steps=total_steps,
        ttl=timedelta(hours=float(raw.get("expiration_hours", 24))),
        entity_kind=raw.get("entity_kind", form_type.removesuffix("_form")),
        steps=steps,
    )


class FormRegistry:
    """Read-only lookup of form-type definitions."""

    def __init__(self, definitions: dict[str, FormTypeDefinition] | None = None) -> None:
        self._definitions = dict(definitions or {})

    @classmethod
    def from_mapping(cls, mapping: dict) -> "FormRegistry":
        return cls({name: parse_form_type(name, raw) for name, raw in mapping.items()})

    @classmethod
    def from_file(cls, path: Path) -> "FormRegistry":
        try:
            with open(path, "rb") as handle:
                mapping = tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise FormConfigurationError(f"Cannot load form definitions from {path}: {exc}") from exc
        return cls.from_mapping(mapping)

    def get(self, form_type: str) -> FormTypeDefinition:
        try:
            return self._definitions[form_type]
        except KeyError:
            raise UnknownFormType(form_type) from None

    def __contains__(self, form_type: str) -> bool:
        return form_type in self._definitions

    @property
    def form_types(self) -> list[str]:
        return sorted(self._definitions)
