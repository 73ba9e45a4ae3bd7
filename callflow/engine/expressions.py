"""
Expression Evaluator for the Workflow Engine.

Steps reference the run's data document through paths:

    $                   the whole document
    $.call.status       nested keys
    $.folios[0].id      list indices
    $['caller id']      keys that are not plain identifiers

Paths are resolved against the document without side effects. Choice steps
combine path references and literals into conditions.
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple, Union
from pydantic import BaseModel, model_validator
from copy import deepcopy
from enum import Enum
import functools
import re

from callflow.errors import InvalidInput


Segment = Union[str, int]

_SEGMENT_RE = re.compile(
    r"""
      \.(?P<key>[A-Za-z0-9_\-]+)
    | \[(?P<index>\d+)\]
    | \[(?P<quote>['"])(?P<quoted>.*?)(?P=quote)\]
    """,
    re.VERBOSE,
)


class _NotFound:
    """Sentinel returned when a path does not resolve."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()


# ============================================================
# Paths
# ============================================================

@functools.lru_cache(maxsize=512)
def parse_path(path: str) -> Tuple[Segment, ...]:
    """
    Parse a path expression into its segments.

    Args:
        path: Path string starting with '$'

    Returns:
        Tuple of keys (str) and list indices (int)

    Raises:
        InvalidInput: If the path is malformed
    """
    if not isinstance(path, str) or not path.startswith("$"):
        raise InvalidInput(f"Path must start with '$': {path!r}")

    segments: List[Segment] = []
    pos = 1
    while pos < len(path):
        match = _SEGMENT_RE.match(path, pos)
        if match is None:
            raise InvalidInput(f"Malformed path {path!r} at position {pos}")
        if match.group("key") is not None:
            segments.append(match.group("key"))
        elif match.group("index") is not None:
            segments.append(int(match.group("index")))
        else:
            segments.append(match.group("quoted"))
        pos = match.end()

    return tuple(segments)


def resolve(document: Any, path: str) -> Any:
    """Resolve a path against a document, returning NOT_FOUND if any segment is absent."""
    current = document
    for segment in parse_path(path):
        if isinstance(segment, int):
            if not isinstance(current, list) or segment >= len(current):
                return NOT_FOUND
            current = current[segment]
        else:
            if not isinstance(current, dict) or segment not in current:
                return NOT_FOUND
            current = current[segment]
    return current


def resolve_required(document: Any, path: str) -> Any:
    """Resolve a path, raising InvalidInput if it does not exist."""
    value = resolve(document, path)
    if value is NOT_FOUND:
        raise InvalidInput(f"Path '{path}' not found in data document", details={"path": path})
    return value


def assign(document: Dict[str, Any], path: str, value: Any) -> Dict[str, Any]:
    """
    Write a value into a copy of the document.

    At '$' a dict value is merged into the document (last write wins);
    anywhere else the value replaces whatever is at the path, creating
    intermediate objects as needed.

    Args:
        document: The current data document (not modified)
        path: Target path
        value: Value to write

    Returns:
        The new data document
    """
    segments = parse_path(path)
    value = deepcopy(value)

    if not segments:
        if not isinstance(value, dict):
            raise InvalidInput(
                f"Cannot merge a {type(value).__name__} into the document root",
                details={"path": path},
            )
        new_document = deepcopy(document)
        new_document.update(value)
        return new_document

    new_document = deepcopy(document)
    cursor: Any = new_document
    for position, segment in enumerate(segments[:-1]):
        following = segments[position + 1]
        if isinstance(segment, int):
            if not isinstance(cursor, list) or segment >= len(cursor):
                raise InvalidInput(f"Index {segment} out of range in path '{path}'")
            cursor = cursor[segment]
            continue
        if not isinstance(cursor, dict):
            raise InvalidInput(f"Cannot descend into non-object at '{segment}' in path '{path}'")
        if cursor.get(segment) is None:
            if isinstance(following, int):
                raise InvalidInput(f"Cannot create list element in path '{path}'")
            cursor[segment] = {}
        cursor = cursor[segment]

    last = segments[-1]
    if isinstance(last, int):
        if not isinstance(cursor, list) or last >= len(cursor):
            raise InvalidInput(f"Index {last} out of range in path '{path}'")
        cursor[last] = value
    elif isinstance(cursor, dict):
        cursor[last] = value
    else:
        raise InvalidInput(f"Cannot write key '{last}' into a non-object in path '{path}'")

    return new_document


# ============================================================
# Conditions
# ============================================================

class Operator(str, Enum):
    """Comparison operators available to conditions."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    NUMERIC_EQUALS = "numeric_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_EQUALS = "greater_than_equals"
    LESS_THAN = "less_than"
    LESS_THAN_EQUALS = "less_than_equals"
    IS_PRESENT = "is_present"


_NUMERIC_OPERATORS = {
    Operator.NUMERIC_EQUALS: lambda a, b: a == b,
    Operator.GREATER_THAN: lambda a, b: a > b,
    Operator.GREATER_THAN_EQUALS: lambda a, b: a >= b,
    Operator.LESS_THAN: lambda a, b: a < b,
    Operator.LESS_THAN_EQUALS: lambda a, b: a <= b,
}


class Condition(BaseModel):
    """
    A predicate over the data document.

    Either a comparison (variable + operator + value/value_path) or a
    compound of other conditions (all_of / any_of / negate).

    Attributes:
        variable: Path of the left operand
        operator: Comparison operator
        value: Literal right operand
        value_path: Path of the right operand (instead of a literal)
        all_of: True if every nested condition holds
        any_of: True if at least one nested condition holds
        negate: True if the nested condition does not hold
    """

    variable: Optional[str] = None
    operator: Optional[Operator] = None
    value: Any = None
    value_path: Optional[str] = None
    all_of: Optional[Tuple["Condition", ...]] = None
    any_of: Optional[Tuple["Condition", ...]] = None
    negate: Optional["Condition"] = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "variable": "$.connection_type",
                "operator": "equals",
                "value": "ivr",
            }
        }

    @model_validator(mode="after")
    def _check_shape(self) -> "Condition":
        compounds = [c for c in (self.all_of, self.any_of, self.negate) if c is not None]
        if compounds:
            if len(compounds) > 1 or self.variable is not None or self.operator is not None:
                raise ValueError("A compound condition must use exactly one of all_of, any_of, negate")
            if self.negate is None and not compounds[0]:
                raise ValueError("Compound condition needs at least one nested condition")
            return self

        if self.variable is None or self.operator is None:
            raise ValueError("Condition needs a variable and an operator")
        has_value = self.value is not None or (
            "value" in self.model_fields_set and self.value_path is None
        )
        if self.operator == Operator.IS_PRESENT:
            if self.value_path is not None:
                raise ValueError("is_present does not take value_path")
            if self.value is not None and not isinstance(self.value, bool):
                raise ValueError("is_present value must be a boolean")
        elif has_value == (self.value_path is not None):
            raise ValueError("Condition needs exactly one of value or value_path")
        return self

    def paths(self) -> Iterator[str]:
        """Yield every path referenced by this condition."""
        for nested in (self.all_of or ()) + (self.any_of or ()):
            yield from nested.paths()
        if self.negate is not None:
            yield from self.negate.paths()
        if self.variable is not None:
            yield self.variable
        if self.value_path is not None:
            yield self.value_path


Condition.model_rebuild()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


def evaluate(condition: Condition, document: Dict[str, Any]) -> bool:
    """
    Evaluate a condition against the data document.

    Raises:
        InvalidInput: If a referenced path is missing or a numeric
            comparison receives a non-numeric operand
    """
    if condition.all_of is not None:
        return all(evaluate(nested, document) for nested in condition.all_of)
    if condition.any_of is not None:
        return any(evaluate(nested, document) for nested in condition.any_of)
    if condition.negate is not None:
        return not evaluate(condition.negate, document)

    left = resolve(document, condition.variable)

    if condition.operator == Operator.IS_PRESENT:
        expected = True if condition.value is None else condition.value
        return (left is not NOT_FOUND) == expected

    if left is NOT_FOUND:
        raise InvalidInput(
            f"Path '{condition.variable}' not found in data document",
            details={"path": condition.variable},
        )

    if condition.value_path is not None:
        right = resolve_required(document, condition.value_path)
    else:
        right = condition.value

    if condition.operator == Operator.EQUALS:
        return _strict_equals(left, right)
    if condition.operator == Operator.NOT_EQUALS:
        return not _strict_equals(left, right)

    for operand, source in ((left, condition.variable), (right, condition.value_path or "literal")):
        if not _is_number(operand):
            raise InvalidInput(
                f"Numeric comparison on non-numeric value {operand!r} ({source})",
                details={"operator": condition.operator.value},
            )
    return _NUMERIC_OPERATORS[condition.operator](left, right)
