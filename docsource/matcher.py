"""In-memory evaluation of store filters.

Coalesced lookups fetch the union of several filters in one query and then
split the result back per filter. The split re-evaluates each original
filter against each returned document, so this module must agree with the
store on every operator it accepts. Anything outside ``SUPPORTED_OPERATORS``
is rejected up front instead of being guessed at.

Semantics follow the document store's query language: dotted paths walk
into sub-documents and fan out over arrays, a scalar condition matches an
array that contains it, ``None`` matches a missing field, and ordering
comparisons only hold between values of the same type bracket.
"""

import re
from collections.abc import Mapping, Sequence
from datetime import datetime
from decimal import Decimal

import typing as t
from bson import Decimal128, ObjectId
from bson.regex import Regex

from .errors import MalformedFilterError, UnsupportedOperatorError

__all__ = [
    "FIELD_OPERATORS",
    "LOGICAL_OPERATORS",
    "SUPPORTED_OPERATORS",
    "ResultMatcher",
]

LOGICAL_OPERATORS = frozenset({"$and", "$or", "$nor"})
FIELD_OPERATORS = frozenset(
    {
        "$eq",
        "$ne",
        "$gt",
        "$gte",
        "$lt",
        "$lte",
        "$in",
        "$nin",
        "$exists",
        "$not",
        "$regex",
        "$options",
        "$all",
        "$size",
        "$elemMatch",
        "$mod",
    },
)
SUPPORTED_OPERATORS = LOGICAL_OPERATORS | FIELD_OPERATORS

_LIST_OPERANDS = frozenset({"$in", "$nin", "$all"})
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}

_COMPARATORS: dict[str, t.Callable[[t.Any, t.Any], bool]] = {
    "$gt": lambda a, b: a > b,
    "$gte": lambda a, b: a >= b,
    "$lt": lambda a, b: a < b,
    "$lte": lambda a, b: a <= b,
}


def _is_operator_expression(condition: t.Any) -> bool:
    if not isinstance(condition, Mapping) or not condition:
        return False
    operator_keys = [key for key in condition if str(key).startswith("$")]
    if not operator_keys:
        return False
    if len(operator_keys) != len(condition):
        msg = "Cannot mix operators and field names in one condition"
        raise MalformedFilterError(condition, msg)
    return True


def _is_regex(value: t.Any) -> bool:
    return isinstance(value, re.Pattern | Regex)


def _compile(pattern: t.Any, options: str = "") -> re.Pattern[str]:
    if isinstance(pattern, Regex):
        pattern = pattern.try_compile()
    flags = 0
    for option in options:
        flags |= _REGEX_FLAGS.get(option, 0)
    if isinstance(pattern, re.Pattern):
        return re.compile(pattern.pattern, pattern.flags | flags)
    return re.compile(str(pattern), flags)


def _check_pattern(pattern: t.Any, options: t.Any, condition: t.Any) -> None:
    if not isinstance(pattern, str) and not _is_regex(pattern):
        msg = "$regex requires a string or a compiled pattern"
        raise MalformedFilterError(condition, msg)
    if not isinstance(options, str):
        msg = "$options must be a string"
        raise MalformedFilterError(condition, msg)
    try:
        _compile(pattern, options)
    except re.error as e:
        msg = f"Invalid regular expression: {e}"
        raise MalformedFilterError(condition, msg) from e


def _is_number(value: t.Any) -> bool:
    return isinstance(value, int | float | Decimal | Decimal128) and not isinstance(
        value,
        bool,
    )


def _number(value: t.Any) -> t.Any:
    return value.to_decimal() if isinstance(value, Decimal128) else value


def _bracket(value: t.Any) -> str | None:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, ObjectId):
        return "objectid"
    if isinstance(value, datetime):
        return "date"
    return None


def _equals(left: t.Any, right: t.Any) -> bool:
    if _is_number(left) and _is_number(right):
        try:
            return bool(_number(left) == _number(right))
        except ArithmeticError:
            return False
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, Mapping) or isinstance(right, Mapping):
        if not (isinstance(left, Mapping) and isinstance(right, Mapping)):
            return False
        if list(left) != list(right):
            return False
        return all(_equals(left[key], right[key]) for key in left)
    if isinstance(left, list) or isinstance(right, list):
        if not (isinstance(left, list) and isinstance(right, list)):
            return False
        return len(left) == len(right) and all(
            _equals(a, b) for a, b in zip(left, right, strict=True)
        )
    return bool(left == right)


def _compare(left: t.Any, right: t.Any, operator: str) -> bool:
    bracket = _bracket(left)
    if bracket is None or bracket != _bracket(right):
        return False
    if bracket == "null":
        return operator in ("$gte", "$lte")
    try:
        return _COMPARATORS[operator](_number(left), _number(right))
    except (TypeError, ArithmeticError):
        return False


def _resolve(value: t.Any, parts: Sequence[str]) -> list[t.Any]:
    """Collect every value reachable from ``value`` along a dotted path."""
    if not parts:
        return [value]
    head, rest = parts[0], parts[1:]
    if isinstance(value, Mapping):
        if head not in value:
            return []
        return _resolve(value[head], rest)
    if isinstance(value, list):
        found: list[t.Any] = []
        if head.isdigit() and int(head) < len(value):
            found.extend(_resolve(value[int(head)], rest))
        for item in value:
            if isinstance(item, Mapping):
                found.extend(_resolve(item, parts))
        return found
    return []


def _path_missing(value: t.Any, parts: Sequence[str]) -> bool:
    """Whether some array branch of a dotted path stops short of its end."""
    if not parts:
        return False
    head, rest = parts[0], parts[1:]
    if isinstance(value, Mapping):
        return head not in value or _path_missing(value[head], rest)
    if isinstance(value, list):
        if head.isdigit():
            return False
        return any(
            _path_missing(item, parts) for item in value if isinstance(item, Mapping)
        )
    return True


def _candidates(values: list[t.Any]) -> t.Iterator[t.Any]:
    for value in values:
        yield value
        if isinstance(value, list):
            yield from value


def _equals_any(values: list[t.Any], expected: t.Any) -> bool:
    if not values:
        return expected is None
    if _is_regex(expected):
        pattern = _compile(expected)
        return any(
            isinstance(candidate, str) and pattern.search(candidate) is not None
            for candidate in _candidates(values)
        )
    return any(_equals(candidate, expected) for candidate in _candidates(values))


class ResultMatcher:
    """Evaluates filters against documents held in memory."""

    def matches(self, document: Mapping[str, t.Any], filter: Mapping[str, t.Any]) -> bool:
        for key, condition in filter.items():
            if key.startswith("$"):
                if not self._match_logical(document, key, condition):
                    return False
            elif not self._match_field(document, key, condition):
                return False
        return True

    def select(
        self,
        documents: t.Iterable[Mapping[str, t.Any]],
        filter: Mapping[str, t.Any],
    ) -> list[t.Any]:
        """Return the documents that satisfy ``filter``, in their given order."""
        return [document for document in documents if self.matches(document, filter)]

    def _match_logical(
        self,
        document: Mapping[str, t.Any],
        operator: str,
        clauses: t.Any,
    ) -> bool:
        if operator == "$and":
            return all(self.matches(document, clause) for clause in clauses)
        if operator == "$or":
            return any(self.matches(document, clause) for clause in clauses)
        if operator == "$nor":
            return not any(self.matches(document, clause) for clause in clauses)
        raise UnsupportedOperatorError(operator)

    def _match_field(
        self,
        document: Mapping[str, t.Any],
        path: str,
        condition: t.Any,
    ) -> bool:
        parts = path.split(".")
        values = _resolve(document, parts)
        if values and _path_missing(document, parts):
            # an array element without the sub-path reads as null
            values.append(None)
        if _is_operator_expression(condition):
            return self._match_expression(values, condition)
        return _equals_any(values, condition)

    def _match_expression(
        self,
        values: list[t.Any],
        expression: Mapping[str, t.Any],
    ) -> bool:
        for operator, operand in expression.items():
            if operator == "$options":
                continue
            if not self._apply(operator, operand, values, expression):
                return False
        return True

    def _apply(
        self,
        operator: str,
        operand: t.Any,
        values: list[t.Any],
        expression: Mapping[str, t.Any],
    ) -> bool:
        if operator == "$eq":
            return _equals_any(values, operand)
        if operator == "$ne":
            return not _equals_any(values, operand)
        if operator in _COMPARATORS:
            return any(
                _compare(candidate, operand, operator)
                for candidate in _candidates(values or [None])
            )
        if operator == "$in":
            return any(_equals_any(values, item) for item in operand)
        if operator == "$nin":
            return not any(_equals_any(values, item) for item in operand)
        if operator == "$exists":
            return bool(values) == bool(operand)
        if operator == "$not":
            if _is_regex(operand):
                return not _equals_any(values, operand)
            return not self._match_expression(values, operand)
        if operator == "$regex":
            pattern = _compile(operand, expression.get("$options", ""))
            return any(
                isinstance(candidate, str) and pattern.search(candidate) is not None
                for candidate in _candidates(values)
            )
        if operator == "$all":
            return bool(operand) and all(_equals_any(values, item) for item in operand)
        if operator == "$size":
            return any(
                isinstance(value, list) and len(value) == operand for value in values
            )
        if operator == "$elemMatch":
            return any(
                isinstance(value, list)
                and any(self._element_matches(item, operand) for item in value)
                for value in values
            )
        if operator == "$mod":
            divisor, remainder = operand
            return any(
                _is_number(candidate)
                and int(_number(candidate)) % int(divisor) == int(remainder)
                for candidate in _candidates(values)
            )
        raise UnsupportedOperatorError(operator)

    def _element_matches(self, element: t.Any, condition: Mapping[str, t.Any]) -> bool:
        first = next(iter(condition), "")
        if first.startswith("$") and first not in LOGICAL_OPERATORS:
            return self._match_expression([element], condition)
        return isinstance(element, Mapping) and self.matches(element, condition)

    def validate(self, filter: t.Any) -> None:
        """Raise unless every operator in ``filter`` can be evaluated here."""
        if not isinstance(filter, Mapping):
            raise MalformedFilterError(filter, "A filter must be a mapping")
        for key, condition in filter.items():
            if not isinstance(key, str):
                raise MalformedFilterError(filter, f"Non-string field name {key!r}")
            if key.startswith("$"):
                self._validate_logical(key, condition, filter)
            else:
                self._validate_condition(condition)

    def _validate_logical(self, operator: str, clauses: t.Any, filter: t.Any) -> None:
        if operator not in LOGICAL_OPERATORS:
            raise UnsupportedOperatorError(operator, filter)
        if not isinstance(clauses, list | tuple) or not clauses:
            msg = f"{operator} requires a non-empty list of filters"
            raise MalformedFilterError(filter, msg)
        for clause in clauses:
            self.validate(clause)

    def _validate_condition(self, condition: t.Any) -> None:
        if not _is_operator_expression(condition):
            if _is_regex(condition):
                _check_pattern(condition, "", condition)
            return
        for operator, operand in condition.items():
            if operator not in FIELD_OPERATORS:
                raise UnsupportedOperatorError(operator, condition)
            if operator in _LIST_OPERANDS and not isinstance(operand, list | tuple):
                msg = f"{operator} requires a list"
                raise MalformedFilterError(condition, msg)
            if operator == "$options" and "$regex" not in condition:
                msg = "$options requires $regex"
                raise MalformedFilterError(condition, msg)
            if operator == "$regex":
                _check_pattern(operand, condition.get("$options", ""), condition)
            if operator in ("$in", "$nin"):
                for item in operand:
                    if _is_regex(item):
                        _check_pattern(item, "", condition)
            if operator == "$exists" and isinstance(operand, Mapping | list | tuple):
                msg = "$exists requires a boolean"
                raise MalformedFilterError(condition, msg)
            if operator == "$not" and _is_regex(operand):
                _check_pattern(operand, "", condition)
            if operator == "$not" and not _is_regex(operand):
                if not _is_operator_expression(operand):
                    msg = "$not requires an operator expression or a regex"
                    raise MalformedFilterError(condition, msg)
                self._validate_condition(operand)
            if operator == "$elemMatch":
                self._validate_elem_match(operand, condition)
            if operator == "$size" and (
                not isinstance(operand, int) or isinstance(operand, bool)
            ):
                msg = "$size requires an integer"
                raise MalformedFilterError(condition, msg)
            if operator == "$mod" and (
                not isinstance(operand, list | tuple)
                or len(operand) != 2
                or not all(_is_number(part) for part in operand)
                or not _number(operand[0])
            ):
                msg = "$mod requires [divisor, remainder] with a non-zero divisor"
                raise MalformedFilterError(condition, msg)

    def _validate_elem_match(self, operand: t.Any, condition: t.Any) -> None:
        if not isinstance(operand, Mapping) or not operand:
            msg = "$elemMatch requires a non-empty mapping"
            raise MalformedFilterError(condition, msg)
        first = next(iter(operand))
        if first.startswith("$") and first not in LOGICAL_OPERATORS:
            self._validate_condition(operand)
        else:
            self.validate(operand)
