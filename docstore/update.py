# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Update operators and their per-document application."""

import copy
import logging
from collections.abc import Mapping
from typing import Any, Iterable, NamedTuple

from .document import ID_FIELD, MISSING, Document, get_path, is_number, set_path, unset_path, values_equal
from .errors import TypeMismatchError, ValidationError
from .index import IndexManager

logger = logging.getLogger(__name__)

UPDATE_OPERATORS = ("$set", "$mul", "$inc", "$unset")
NUMERIC_OPERATORS = ("$mul", "$inc")


class UpdateOperation(NamedTuple):
    operator: str
    field: str
    operand: Any


def _overlaps(left: str, right: str) -> bool:
    return left == right or left.startswith(right + ".") or right.startswith(left + ".")


def compile_update(spec: Mapping[str, Any]) -> list[UpdateOperation]:
    """Validate an update specification into an ordered list of operations.

    Raises:
        ValidationError: If the specification is empty, uses unknown operators,
            has non-numeric $mul/$inc operands, targets _id, or touches the
            same field twice
    """
    if not isinstance(spec, Mapping) or not spec:
        raise ValidationError("Update specification must be a non-empty mapping of operators")

    errors: list[str] = []
    operations: list[UpdateOperation] = []
    for operator, fields in spec.items():
        if not isinstance(operator, str) or not operator.startswith("$"):
            errors.append(f"Update specification may only contain operators, found '{operator}'")
            continue
        if operator not in UPDATE_OPERATORS:
            errors.append(f"Unknown update operator '{operator}'")
            continue
        if not isinstance(fields, Mapping) or not fields:
            errors.append(f"{operator} requires a non-empty mapping of fields")
            continue

        for field, operand in fields.items():
            if not isinstance(field, str) or not field or field.startswith("$"):
                errors.append(f"Invalid field name {field!r} in {operator}")
                continue
            if _overlaps(field, ID_FIELD):
                errors.append(f"{operator} cannot modify the immutable field '_id'")
                continue
            if operator in NUMERIC_OPERATORS and not is_number(operand):
                errors.append(f"{operator} operand for '{field}' must be a number, got {operand!r}")
                continue
            for existing in operations:
                if _overlaps(existing.field, field):
                    errors.append(
                        f"Updating '{field}' would conflict with '{existing.field}' ({existing.operator})"
                    )
                    break
            else:
                operations.append(UpdateOperation(operator, field, operand))

    if errors:
        raise ValidationError(errors)
    return operations


def _check_parent(fields: dict, path: str) -> None:
    parts = path.split(".")
    current: Any = fields
    for depth, part in enumerate(parts[:-1]):
        current = current.get(part, MISSING) if isinstance(current, dict) else MISSING
        if current is MISSING:
            return
        if not isinstance(current, dict):
            raise TypeMismatchError(".".join(parts[:depth + 1]), "traverse", current)


def apply_update(fields: dict[str, Any], operations: Iterable[UpdateOperation]) -> list[str]:
    """Apply operations to one document's fields as a single step.

    All operations run against a working copy; the stored fields are only
    replaced once every operation succeeded.

    Returns:
        Field paths whose value actually changed

    Raises:
        TypeMismatchError: If an operator meets a value of the wrong kind
    """
    working = copy.deepcopy(fields)
    changed: list[str] = []

    for operation in operations:
        path = operation.field
        current = get_path(working, path)

        if operation.operator == "$unset":
            if unset_path(working, path):
                changed.append(path)
            continue

        if operation.operator == "$set":
            new_value = copy.deepcopy(operation.operand)
        elif operation.operator == "$mul":
            if not is_number(current):
                raise TypeMismatchError(path, "$mul", current)
            new_value = current * operation.operand
        else:
            if current is MISSING:
                new_value = operation.operand
            elif not is_number(current):
                raise TypeMismatchError(path, "$inc", current)
            else:
                new_value = current + operation.operand

        if current is not MISSING and values_equal(current, new_value) and type(current) is type(new_value):
            continue
        _check_parent(working, path)
        set_path(working, path, new_value)
        changed.append(path)

    if changed:
        fields.clear()
        fields.update(working)
    return changed


def update_documents(
    documents: Iterable[Document],
    operations: list[UpdateOperation],
    indexes: IndexManager,
) -> tuple[int, int]:
    """Apply operations to each matched document, re-indexing as it goes.

    A document whose field has the wrong kind for an operator is skipped: it
    counts as matched but not modified.

    Returns:
        Tuple of (matched_count, modified_count)
    """
    matched = 0
    modified = 0
    for doc in documents:
        matched += 1
        try:
            changed = apply_update(doc.fields, operations)
        except TypeMismatchError as e:
            logger.debug(f"update_documents: skipped document {doc.doc_id}: {e}")
            continue
        if changed:
            indexes.on_update(doc, changed)
            modified += 1
    return matched, modified
