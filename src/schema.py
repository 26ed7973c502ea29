"""Declarative field constraints and the generic validation/diff pass.

A Schema maps field names to FieldSpec entries. The same table drives input
validation, default filling, planning (diffing observed against desired
values) and the carry-over of sensitive values the remote never echoes.
"""

import copy
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

from models import FieldChange, ResourceSpec, ValidationError
from validation import DiffSuppressor, Validator


class FieldType(Enum):
    """Value types a field can hold."""

    STRING = "string"
    INT = "int"
    BOOL = "bool"
    LIST = "list"
    BLOCK_LIST = "block_list"
    MAP = "map"


_PYTHON_TYPES: dict[FieldType, type] = {
    FieldType.STRING: str,
    FieldType.INT: int,
    FieldType.BOOL: bool,
}


@dataclass(frozen=True)
class FieldSpec:
    """Constraints for one field.

    A field that is computed but neither required nor optional is
    computed-only: the remote assigns it and users may not set it. A field
    that is both optional and computed may be set by the user; when it is
    left out, whatever the remote assigns is accepted without a diff.
    """

    type: FieldType
    required: bool = False
    optional: bool = False
    computed: bool = False
    force_new: bool = False
    sensitive: bool = False
    default: Any = None
    max_items: int | None = None
    elem: "Schema | FieldType | None" = None
    validator: Validator | None = None
    diff_suppress: DiffSuppressor | None = None
    sort_key: str | None = None

    def __post_init__(self) -> None:
        if self.required and self.default is not None:
            raise ValueError("a required field cannot have a default")
        if self.type is FieldType.BLOCK_LIST and not isinstance(self.elem, Schema):
            raise ValueError("block list fields need an element schema")
        if self.type is FieldType.LIST and not isinstance(self.elem, FieldType):
            raise ValueError("list fields need a primitive element type")

    @property
    def computed_only(self) -> bool:
        return self.computed and not (self.required or self.optional)


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _type_error(ftype: FieldType, value: Any) -> str | None:
    expected = _PYTHON_TYPES.get(ftype)
    if expected is None:
        return None
    # bool is a subclass of int; never accept it for an int field
    if isinstance(value, bool) and ftype is not FieldType.BOOL:
        return f"expected {ftype.value}, got bool"
    if not isinstance(value, expected):
        return f"expected {ftype.value}, got {type(value).__name__}"
    return None


class Schema:
    """An ordered table of field constraints for one resource kind or block."""

    def __init__(self, fields: dict[str, FieldSpec]) -> None:
        self.fields = dict(fields)

    def __iter__(self) -> Iterator[str]:
        return iter(self.fields)

    def __getitem__(self, name: str) -> FieldSpec:
        return self.fields[name]

    # -------------------------------------------------------------------------
    # Validation and defaults
    # -------------------------------------------------------------------------

    def validate(self, spec: Any, path: str = "") -> list[str]:
        """Return every constraint violation found in spec."""
        if not isinstance(spec, dict):
            return [f"{path or 'spec'}: expected a mapping"]

        errors = [
            f"{_join(path, key)}: unknown field"
            for key in spec
            if key not in self.fields
        ]

        for name, fs in self.fields.items():
            field_path = _join(path, name)
            value = spec.get(name)
            if value is None:
                if fs.required:
                    errors.append(f"{field_path}: required field is missing")
                continue
            if fs.computed_only:
                errors.append(f"{field_path}: computed field cannot be set")
                continue
            errors.extend(self._validate_value(fs, value, field_path))

        return errors

    def _validate_value(self, fs: FieldSpec, value: Any, path: str) -> list[str]:
        if fs.type in (FieldType.BLOCK_LIST, FieldType.LIST):
            if not isinstance(value, list):
                return [f"{path}: expected a list"]
            errors = []
            if fs.max_items is not None and len(value) > fs.max_items:
                errors.append(
                    f"{path}: at most {fs.max_items} item(s) allowed, got {len(value)}"
                )
            for i, item in enumerate(value):
                item_path = f"{path}.{i}"
                if isinstance(fs.elem, Schema):
                    errors.extend(fs.elem.validate(item, item_path))
                    continue
                problem = _type_error(fs.elem, item)
                if problem is None and fs.validator is not None:
                    problem = fs.validator(item)
                if problem:
                    errors.append(f"{item_path}: {problem}")
            return errors

        if fs.type is FieldType.MAP:
            if not isinstance(value, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in value.items()
            ):
                return [f"{path}: expected a mapping of strings"]
            problem = fs.validator(value) if fs.validator is not None else None
            return [f"{path}: {problem}"] if problem else []

        problem = _type_error(fs.type, value)
        if problem is None and fs.validator is not None:
            problem = fs.validator(value)
        return [f"{path}: {problem}"] if problem else []

    def apply_defaults(self, spec: ResourceSpec) -> ResourceSpec:
        """Return a copy of spec with defaults filled in, nested blocks included."""
        result: ResourceSpec = {}
        for name, fs in self.fields.items():
            value = spec.get(name)
            if value is None and fs.default is not None:
                value = copy.deepcopy(fs.default)
            if value is None:
                continue
            if fs.type is FieldType.BLOCK_LIST:
                value = [fs.elem.apply_defaults(block) for block in value]
            else:
                value = copy.deepcopy(value)
            result[name] = value
        return result

    def normalize(self, spec: Any) -> ResourceSpec:
        """Validate spec and fill in defaults.

        Raises:
            ValidationError: Listing every violation found.
        """
        errors = self.validate(spec)
        if errors:
            raise ValidationError(errors)
        return self.apply_defaults(spec)

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def diff(
        self,
        old: ResourceSpec,
        new: ResourceSpec,
        path: str = "",
        force_new: bool = False,
    ) -> list[FieldChange]:
        """Plan the changes that turn observed values `old` into desired `new`."""
        changes: list[FieldChange] = []

        for name, fs in self.fields.items():
            if fs.computed_only:
                continue
            field_path = _join(path, name)
            replaces = force_new or fs.force_new
            old_value = old.get(name)
            new_value = new.get(name)

            if _unset(new_value):
                if not fs.computed and not _unset(old_value):
                    changes.append(FieldChange(field_path, old_value, None, replaces))
                continue
            if _unset(old_value) and fs.sensitive:
                # The remote does not return this value; nothing to compare
                continue
            if fs.type is FieldType.BLOCK_LIST:
                changes.extend(
                    self._diff_blocks(fs, old_value or [], new_value, field_path, replaces)
                )
                continue
            if _equal(fs, old_value, new_value):
                continue
            changes.append(FieldChange(field_path, old_value, new_value, replaces))

        return changes

    def _diff_blocks(
        self,
        fs: FieldSpec,
        old_blocks: list[ResourceSpec],
        new_blocks: list[ResourceSpec],
        path: str,
        force_new: bool,
    ) -> list[FieldChange]:
        changes: list[FieldChange] = []

        if fs.sort_key is None:
            for i, new_block in enumerate(new_blocks):
                if i >= len(old_blocks):
                    changes.append(FieldChange(f"{path}.{i}", None, new_block, force_new))
                    continue
                changes.extend(
                    fs.elem.diff(old_blocks[i], new_block, f"{path}.{i}", force_new)
                )
            for i in range(len(new_blocks), len(old_blocks)):
                changes.append(FieldChange(f"{path}.{i}", old_blocks[i], None, force_new))
            return changes

        old_by_key = {block.get(fs.sort_key): block for block in old_blocks}
        new_by_key = {block.get(fs.sort_key): block for block in new_blocks}
        for ident, new_block in new_by_key.items():
            block_path = f"{path}.{ident}"
            if ident not in old_by_key:
                changes.append(FieldChange(block_path, None, new_block, force_new))
                continue
            changes.extend(
                fs.elem.diff(old_by_key[ident], new_block, block_path, force_new)
            )
        for ident, old_block in old_by_key.items():
            if ident not in new_by_key:
                changes.append(FieldChange(f"{path}.{ident}", old_block, None, force_new))
        return changes

    # -------------------------------------------------------------------------
    # Observed state helpers
    # -------------------------------------------------------------------------

    def merge_sensitive(
        self, observed: ResourceSpec, prior: ResourceSpec | None
    ) -> ResourceSpec:
        """Carry sensitive values the remote omitted over from prior state."""
        if not prior:
            return observed

        merged = dict(observed)
        for name, fs in self.fields.items():
            prior_value = prior.get(name)
            if prior_value is None:
                continue
            if fs.sensitive and merged.get(name) is None:
                merged[name] = copy.deepcopy(prior_value)
            elif fs.type is FieldType.BLOCK_LIST and merged.get(name):
                merged[name] = [
                    fs.elem.merge_sensitive(block, _match_block(fs, block, prior_value, i))
                    for i, block in enumerate(merged[name])
                ]
        return merged

    def computed_values(self, attributes: ResourceSpec) -> ResourceSpec:
        """Return the top-level computed, non-sensitive values of attributes."""
        return {
            name: attributes[name]
            for name, fs in self.fields.items()
            if fs.computed and not fs.sensitive and attributes.get(name) is not None
        }

    def configurable(self, attributes: ResourceSpec) -> ResourceSpec:
        """Drop computed-only values, recursively."""
        result: ResourceSpec = {}
        for name, fs in self.fields.items():
            if fs.computed_only or name not in attributes:
                continue
            value = attributes[name]
            if fs.type is FieldType.BLOCK_LIST and value is not None:
                value = [fs.elem.configurable(block) for block in value]
            result[name] = value
        return result


def _unset(value: Any) -> bool:
    return value is None or value == [] or value == {}


def _equal(fs: FieldSpec, old: Any, new: Any) -> bool:
    if old == new:
        return True
    if fs.diff_suppress is not None and old is not None:
        return fs.diff_suppress(old, new)
    return False


def _match_block(
    fs: FieldSpec, block: ResourceSpec, prior_blocks: list[ResourceSpec], index: int
) -> ResourceSpec | None:
    if fs.sort_key is not None:
        for candidate in prior_blocks:
            if candidate.get(fs.sort_key) == block.get(fs.sort_key):
                return candidate
        return None
    return prior_blocks[index] if index < len(prior_blocks) else None


def order_blocks(
    blocks: list[ResourceSpec],
    key: str,
    prior: list[ResourceSpec] | None = None,
) -> list[ResourceSpec]:
    """Order blocks the remote returns in no guaranteed order.

    Blocks follow the order they had in prior; blocks prior does not know
    come after, in a stable sort on the key field.
    """
    by_name = sorted(blocks, key=lambda block: str(block.get(key) or ""))
    if not prior:
        return by_name

    position = {block.get(key): i for i, block in enumerate(prior)}
    return sorted(by_name, key=lambda block: position.get(block.get(key), len(position)))
