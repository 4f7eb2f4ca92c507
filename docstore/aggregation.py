# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Aggregation pipeline interpreter.

A pipeline is a list of single-key stage mappings. The whole pipeline is
validated up front; an unsupported stage or malformed stage specification
raises ValidationError before any record is processed. Per-record problems
(averaging nothing, rounding a missing value) degrade to None instead.

Supported stages: $match, $group, $sort, $project, $limit, $skip.
"""

import copy
import logging
import math
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Any, Iterable, NamedTuple

from .document import ID_FIELD, MISSING, get_path, is_number, ordering_key, set_path, sort_records, unset_path
from .errors import ValidationError
from .predicate import Predicate

logger = logging.getLogger(__name__)

STAGES = ("$match", "$group", "$sort", "$project", "$limit", "$skip")
ACCUMULATORS = ("$sum", "$avg", "$push", "$min", "$max")
EXPRESSION_OPERATORS = ("$round", "$slice", "$literal")


class Stage(NamedTuple):
    name: str
    spec: Any


# =========================
# Expressions
# =========================
def _validate_expression(expr: Any, where: str, errors: list[str]) -> None:
    if isinstance(expr, str):
        if expr == "$":
            errors.append(f"{where}: empty field reference")
        return
    if isinstance(expr, list):
        for item in expr:
            _validate_expression(item, where, errors)
        return
    if not isinstance(expr, Mapping):
        return

    operators = [key for key in expr if isinstance(key, str) and key.startswith("$")]
    if not operators:
        for key, value in expr.items():
            _validate_expression(value, f"{where}.{key}", errors)
        return
    if len(expr) != 1:
        errors.append(f"{where}: an expression object must have exactly one operator")
        return

    op, args = next(iter(expr.items()))
    if op not in EXPRESSION_OPERATORS:
        errors.append(f"{where}: unsupported expression operator '{op}'")
    elif op == "$round":
        if not isinstance(args, list) or len(args) not in (1, 2):
            errors.append(f"{where}: $round takes [value] or [value, digits]")
        else:
            _validate_expression(args[0], where, errors)
            if len(args) == 2 and (not isinstance(args[1], int) or isinstance(args[1], bool)):
                errors.append(f"{where}: $round digits must be an integer")
    elif op == "$slice":
        if not isinstance(args, list) or len(args) != 2:
            errors.append(f"{where}: $slice takes [array, n]")
        else:
            _validate_expression(args[0], where, errors)
            if not isinstance(args[1], int) or isinstance(args[1], bool):
                errors.append(f"{where}: $slice count must be an integer")


def round_half_away(value: Any, digits: int = 0) -> Any:
    """Round a number half away from zero to the given decimal digits.

    Non-numeric input (including None) yields None; infinities and NaN are
    returned unchanged.
    """
    if not is_number(value):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return value
    exact = Decimal(repr(value))
    quantum = Decimal(1).scaleb(-digits)
    with localcontext() as context:
        # quantize fails once the result needs more digits than the context holds
        context.prec = max(context.prec, exact.adjusted() + digits + 2)
        rounded = exact.quantize(quantum, rounding=ROUND_HALF_UP)
    if isinstance(value, int):
        return int(rounded)
    return float(rounded)


def _present_or_none(value: Any) -> Any:
    return None if value is MISSING else value


def evaluate_expression(expr: Any, record: Mapping[str, Any]) -> Any:
    """Evaluate a validated expression against a record.

    "$field" strings are field references, mappings without operators are
    built field by field, and anything else is a literal. An absent field
    reference evaluates to MISSING.
    """
    if isinstance(expr, str) and expr.startswith("$"):
        return get_path(record, expr[1:])
    if isinstance(expr, list):
        # Absent references inside an array become null rather than being dropped.
        return [_present_or_none(evaluate_expression(item, record)) for item in expr]
    if not isinstance(expr, Mapping):
        return expr

    if len(expr) == 1:
        op, args = next(iter(expr.items()))
        if op == "$literal":
            return copy.deepcopy(args)
        if op == "$round":
            digits = args[1] if len(args) == 2 else 0
            return round_half_away(evaluate_expression(args[0], record), digits)
        if op == "$slice":
            value = evaluate_expression(args[0], record)
            if not isinstance(value, list):
                return None
            count = args[1]
            return value[:count] if count >= 0 else value[count:]

    result = {}
    for key, value in expr.items():
        evaluated = evaluate_expression(value, record)
        if evaluated is not MISSING:
            result[key] = evaluated
    return result


# =========================
# Stage compilation
# =========================
def _compile_group(spec: Any, where: str, errors: list[str]) -> Any:
    if not isinstance(spec, Mapping) or ID_FIELD not in spec:
        errors.append(f"{where}: $group requires a mapping with an '_id' expression")
        return None
    _validate_expression(spec[ID_FIELD], f"{where}._id", errors)

    accumulators = []
    for field, accumulator in spec.items():
        if field == ID_FIELD:
            continue
        if not isinstance(accumulator, Mapping) or len(accumulator) != 1:
            errors.append(f"{where}: field '{field}' must be a single accumulator mapping")
            continue
        op, arg = next(iter(accumulator.items()))
        if op not in ACCUMULATORS:
            errors.append(f"{where}: unknown accumulator '{op}' for field '{field}'")
            continue
        _validate_expression(arg, f"{where}.{field}", errors)
        accumulators.append((field, op, arg))
    return (spec[ID_FIELD], accumulators)


def _compile_sort(spec: Any, where: str, errors: list[str]) -> Any:
    if not isinstance(spec, Mapping) or not spec:
        errors.append(f"{where}: $sort requires a non-empty mapping of field to direction")
        return None
    keys = []
    for field, direction in spec.items():
        if isinstance(direction, bool) or direction not in (1, -1):
            errors.append(f"{where}: sort direction for '{field}' must be 1 or -1")
            continue
        keys.append((field, int(direction)))
    return keys


def _projection_flag(value: Any) -> str | None:
    if isinstance(value, bool):
        return "include" if value else "exclude"
    if is_number(value):
        return "include" if value else "exclude"
    return None


def _compile_project(spec: Any, where: str, errors: list[str]) -> Any:
    if not isinstance(spec, Mapping) or not spec:
        errors.append(f"{where}: $project requires a non-empty mapping")
        return None

    entries = []
    include_id = True
    has_inclusion = False
    has_exclusion = False
    for field, value in spec.items():
        flag = _projection_flag(value)
        if field == ID_FIELD and flag is not None:
            include_id = flag == "include"
            continue
        if flag == "exclude":
            has_exclusion = True
        else:
            has_inclusion = True
            if flag is None:
                _validate_expression(value, f"{where}.{field}", errors)
        entries.append((field, flag, value))

    if has_inclusion and has_exclusion:
        errors.append(f"{where}: cannot mix inclusion and exclusion in a projection")
    if not include_id and not has_inclusion:
        # {"_id": 0} on its own keeps every other field.
        has_exclusion = True
    return (include_id, entries, has_exclusion)


def _compile_count(spec: Any, name: str, where: str, errors: list[str]) -> Any:
    if isinstance(spec, bool) or not isinstance(spec, int) or spec < 0:
        errors.append(f"{where}: {name} requires a non-negative integer")
        return None
    return spec


def compile_pipeline(pipeline: Any) -> list[Stage]:
    """Validate a pipeline specification and return its stages.

    Raises:
        ValidationError: If any stage is unsupported or malformed
    """
    if not isinstance(pipeline, (list, tuple)):
        raise ValidationError("Aggregation pipeline must be a list of stages")

    errors: list[str] = []
    stages: list[Stage] = []
    for position, stage in enumerate(pipeline):
        if not isinstance(stage, Mapping) or len(stage) != 1:
            errors.append(f"stage {position}: each stage must be a mapping with exactly one key")
            continue
        name, spec = next(iter(stage.items()))
        where = f"stage {position} ({name})"

        if name == "$match":
            try:
                compiled: Any = Predicate(spec)
            except ValidationError as e:
                errors.extend(f"{where}: {message}" for message in e.errors)
                continue
        elif name == "$group":
            compiled = _compile_group(spec, where, errors)
        elif name == "$sort":
            compiled = _compile_sort(spec, where, errors)
        elif name == "$project":
            compiled = _compile_project(spec, where, errors)
        elif name in ("$limit", "$skip"):
            compiled = _compile_count(spec, name, where, errors)
        else:
            errors.append(f"{where}: unsupported aggregation stage")
            continue
        stages.append(Stage(name, compiled))

    if errors:
        raise ValidationError(errors)
    return stages


# =========================
# Stage execution
# =========================
class _Accumulator:
    """Running state of one accumulator over one partition."""

    def __init__(self, op: str, arg: Any):
        self.op = op
        self.arg = arg
        self.total: Any = 0
        self.count = 0
        self.items: list[Any] = []
        self.extreme: Any = MISSING

    def add(self, record: Mapping[str, Any]) -> None:
        value = evaluate_expression(self.arg, record)
        if self.op in ("$sum", "$avg"):
            if is_number(value):
                self.total += value
                self.count += 1
        elif self.op == "$push":
            if value is not MISSING:
                self.items.append(copy.deepcopy(value))
        elif value is not MISSING and value is not None:
            if self.extreme is MISSING:
                self.extreme = value
            elif self.op == "$min" and ordering_key(value) < ordering_key(self.extreme):
                self.extreme = value
            elif self.op == "$max" and ordering_key(value) > ordering_key(self.extreme):
                self.extreme = value

    def result(self) -> Any:
        if self.op == "$sum":
            return self.total
        if self.op == "$avg":
            return self.total / self.count if self.count else None
        if self.op == "$push":
            return self.items
        return None if self.extreme is MISSING else copy.deepcopy(self.extreme)


def _run_group(records: list[dict], spec: Any) -> list[dict]:
    key_expr, accumulators = spec
    partitions: dict[tuple, tuple[Any, list[_Accumulator]]] = {}
    for record in records:
        key = evaluate_expression(key_expr, record)
        if key is MISSING:
            key = None
        marker = ordering_key(key)
        if marker not in partitions:
            partitions[marker] = (key, [_Accumulator(op, arg) for _, op, arg in accumulators])
        for accumulator in partitions[marker][1]:
            accumulator.add(record)

    output = []
    for key, states in partitions.values():
        row = {ID_FIELD: copy.deepcopy(key)}
        for (field, _, _), accumulator in zip(accumulators, states):
            row[field] = accumulator.result()
        output.append(row)
    return output


def project_record(record: Mapping[str, Any], spec: Any) -> dict:
    """Reshape one record according to a compiled $project specification."""
    include_id, entries, exclusion = spec
    if exclusion:
        result = copy.deepcopy(dict(record))
        for field, _, _ in entries:
            unset_path(result, field)
        if not include_id:
            result.pop(ID_FIELD, None)
        return result

    result: dict[str, Any] = {}
    if include_id and ID_FIELD in record:
        result[ID_FIELD] = copy.deepcopy(record[ID_FIELD])
    for field, flag, value in entries:
        if flag == "include":
            computed = copy.deepcopy(get_path(record, field))
        else:
            computed = evaluate_expression(value, record)
        if computed is not MISSING:
            set_path(result, field, computed)
    return result


def compile_projection(spec: Mapping[str, Any]) -> Any:
    """Validate a projection on its own, as used by cursors."""
    errors: list[str] = []
    compiled = _compile_project(spec, "projection", errors)
    if errors:
        raise ValidationError(errors)
    return compiled


class Pipeline:
    """A compiled aggregation pipeline.

    Example:
        >>> pipeline = Pipeline([{"$match": {"in_stock": True}}, {"$limit": 5}])
        >>> pipeline.run(records)
    """

    def __init__(self, spec: Any):
        self.spec = spec
        self.stages = compile_pipeline(spec)

    @property
    def leading_match(self) -> Predicate | None:
        """The first stage's predicate when the pipeline starts with $match."""
        if self.stages and self.stages[0].name == "$match":
            return self.stages[0].spec
        return None

    def run(self, records: Iterable[Mapping[str, Any]], skip_leading_match: bool = False) -> list[dict]:
        """Execute every stage left to right over the given records."""
        current = [dict(record) for record in records]
        stages = self.stages[1:] if skip_leading_match and self.leading_match is not None else self.stages

        for stage in stages:
            if stage.name == "$match":
                current = [record for record in current if stage.spec(record)]
            elif stage.name == "$group":
                current = _run_group(current, stage.spec)
            elif stage.name == "$sort":
                current = sort_records(current, stage.spec)
            elif stage.name == "$project":
                current = [project_record(record, stage.spec) for record in current]
            elif stage.name == "$limit":
                current = current[:stage.spec]
            elif stage.name == "$skip":
                current = current[stage.spec:]
            logger.debug(f"Pipeline: {stage.name} produced {len(current)} records")

        return current


def run_pipeline(pipeline: Any, records: Iterable[Mapping[str, Any]]) -> list[dict]:
    """Validate and run a pipeline specification over records."""
    return Pipeline(pipeline).run(records)
