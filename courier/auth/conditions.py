"""
Structural conditions on resource fields.

Rules written with MongoDB-style maps ({"authorId": uid},
{"status": {"$in": [...]}}) are compiled into a small closed predicate
language: equality, set membership, and a conjunction of those.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union


class ConditionError(Exception):
    """Raised when a condition map uses an unsupported shape or operator."""
    pass


_MISSING = object()


def field_value(resource: Any, name: str) -> Any:
    """Read a field from a mapping or an attribute object."""
    if isinstance(resource, Mapping):
        return resource.get(name, _MISSING)
    return getattr(resource, name, _MISSING)


@dataclass(frozen=True)
class Eq:
    """field == value (or, for list fields, value in field)."""

    field: str
    value: Any

    def matches(self, resource: Any) -> bool:
        actual = field_value(resource, self.field)
        if actual is _MISSING:
            return False
        if isinstance(actual, (list, tuple, set, frozenset)):
            return self.value in actual
        return actual == self.value

    def to_mapping(self) -> dict[str, Any]:
        return {self.field: self.value}


@dataclass(frozen=True)
class In:
    """field in values (or, for list fields, any overlap)."""

    field: str
    values: tuple[Any, ...]

    def matches(self, resource: Any) -> bool:
        actual = field_value(resource, self.field)
        if actual is _MISSING:
            return False
        if isinstance(actual, (list, tuple, set, frozenset)):
            return any(item in self.values for item in actual)
        return actual in self.values

    def to_mapping(self) -> dict[str, Any]:
        return {self.field: {"$in": list(self.values)}}


@dataclass(frozen=True)
class And:
    """All clauses must hold."""

    clauses: tuple[Union[Eq, In], ...]

    def matches(self, resource: Any) -> bool:
        return all(clause.matches(resource) for clause in self.clauses)

    def to_mapping(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for clause in self.clauses:
            result.update(clause.to_mapping())
        return result


Condition = Union[Eq, In, And]


def _compile_clause(name: str, spec: Any) -> Eq | In:
    if not isinstance(spec, Mapping):
        return Eq(name, spec)

    if len(spec) != 1:
        raise ConditionError(
            f"Condition on '{name}' must have exactly one operator, got {list(spec)}"
        )

    operator, operand = next(iter(spec.items()))
    if operator == "$eq":
        return Eq(name, operand)
    if operator == "$in":
        if isinstance(operand, (str, bytes)) or not hasattr(operand, "__iter__"):
            raise ConditionError(f"'$in' on '{name}' needs a list, got {operand!r}")
        return In(name, tuple(operand))

    raise ConditionError(f"Unsupported operator '{operator}' on '{name}'")


def compile_conditions(conditions: Mapping[str, Any]) -> And:
    """
    Compile a condition map into a predicate.

    Supported shapes per field:
        value            -> Eq
        {"$eq": value}   -> Eq
        {"$in": [...]}   -> In

    Raises:
        ConditionError: for anything else
    """
    if not isinstance(conditions, Mapping):
        raise ConditionError(f"Conditions must be a mapping, got {type(conditions).__name__}")

    return And(tuple(_compile_clause(name, spec) for name, spec in conditions.items()))
