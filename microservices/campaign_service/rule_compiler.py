"""
Segment Rule Compiler

Turns a segment's declarative conditions into an executable predicate over
customers. Compilation validates and coerces every condition value up front,
so evaluation never fails on a well-formed customer record.

Usage:
    predicate = compile_segment(segment.conditions, segment.combinator)
    matching = [c for c in customers if predicate(c)]
"""

import logging
import math
import operator as op
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Sequence

from .models import Combinator, Condition, ConditionOperator, Customer, CustomerField
from .protocols import SegmentRuleError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Matcher = Callable[[Customer, Clock], bool]

_ORDERING = {
    ConditionOperator.GREATER_THAN: op.gt,
    ConditionOperator.LESS_THAN: op.lt,
    ConditionOperator.GREATER_THAN_OR_EQUAL: op.ge,
    ConditionOperator.LESS_THAN_OR_EQUAL: op.le,
    ConditionOperator.EQUALS: op.eq,
    ConditionOperator.NOT_EQUALS: op.ne,
}

_TEXT_MATCH = {
    ConditionOperator.CONTAINS: lambda attr, needle: needle in attr,
    ConditionOperator.STARTS_WITH: lambda attr, needle: attr.startswith(needle),
    ConditionOperator.ENDS_WITH: lambda attr, needle: attr.endswith(needle),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError("number must be finite")
    return number


def _coerce_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, str):
        text = value.strip()
        # fromisoformat() only accepts "Z" from Python 3.11
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return _as_utc(datetime.fromisoformat(text))
    raise ValueError(f"cannot interpret {value!r} as a date")


def _coerce_for_field(customer_field: CustomerField, value: Any) -> Any:
    if customer_field.is_numeric:
        return _coerce_number(value)
    if customer_field.is_date:
        return _coerce_datetime(value)
    if customer_field is CustomerField.EMAIL:
        # stored emails are normalized to lower case
        return str(value).strip().lower()
    return str(value)


def _attribute(customer: Customer, customer_field: CustomerField) -> Any:
    value = customer.attribute(customer_field)
    if value is None:
        return None
    if customer_field.is_date:
        return _as_utc(value)
    if customer_field.is_numeric:
        return float(value)
    return str(value)


def _compile_condition(index: int, condition: Condition) -> Matcher:
    customer_field = condition.field
    operator = condition.operator
    raw = condition.value

    if raw is None:
        raise SegmentRuleError(
            f"Condition {index}: value is required for '{customer_field.value}'", index
        )

    if operator is ConditionOperator.IN_LAST_DAYS:
        if not customer_field.is_date:
            raise SegmentRuleError(
                f"Condition {index}: 'in_last_days' requires a date field, got '{customer_field.value}'",
                index,
            )
        try:
            days = _coerce_number(raw)
            if days < 0:
                raise ValueError("must not be negative")
            window = timedelta(days=days)
        except (TypeError, ValueError, OverflowError) as e:
            raise SegmentRuleError(f"Condition {index}: invalid number of days {raw!r}: {e}", index)

        def in_last_days(customer: Customer, clock: Clock) -> bool:
            attr = _attribute(customer, customer_field)
            if attr is None:
                return False
            now = _as_utc(clock())
            return attr <= now and now - attr <= window

        return in_last_days

    if operator in _TEXT_MATCH:
        needle = str(raw).lower()
        match = _TEXT_MATCH[operator]

        def text_match(customer: Customer, clock: Clock) -> bool:
            attr = customer.attribute(customer_field)
            if attr is None:
                return False
            return match(str(attr).lower(), needle)

        return text_match

    try:
        expected = _coerce_for_field(customer_field, raw)
    except (TypeError, ValueError) as e:
        raise SegmentRuleError(
            f"Condition {index}: invalid value {raw!r} for '{customer_field.value}': {e}", index
        )
    compare = _ORDERING[operator]
    missing_matches = operator is ConditionOperator.NOT_EQUALS

    def ordered(customer: Customer, clock: Clock) -> bool:
        attr = _attribute(customer, customer_field)
        if attr is None:
            return missing_matches
        return compare(attr, expected)

    return ordered


class SegmentPredicate:
    """Compiled segment rules; call with a Customer to test membership"""

    def __init__(
        self,
        conditions: Sequence[Condition],
        combinator: Combinator,
        matchers: List[Matcher],
        clock: Clock,
    ):
        self.conditions = tuple(conditions)
        self.combinator = combinator
        self._matchers = tuple(matchers)
        self._clock = clock
        self._reduce = all if combinator is Combinator.ALL else any

    def __call__(self, customer: Customer) -> bool:
        return self._reduce(m(customer, self._clock) for m in self._matchers)

    def __repr__(self) -> str:
        rules = f" {self.combinator.value.upper()} ".join(
            f"{c.field.value} {c.operator.value} {c.value!r}" for c in self.conditions
        )
        return f"SegmentPredicate({rules})"


def compile_segment(
    conditions: Sequence[Condition],
    combinator: Combinator = Combinator.ALL,
    clock: Optional[Clock] = None,
) -> SegmentPredicate:
    """
    Compile segment conditions into a predicate.

    Args:
        conditions: Ordered conditions (at least one)
        combinator: ALL (logical AND) or ANY (logical OR)
        clock: Source of "now" for relative date rules, defaults to UTC wall clock

    Returns:
        SegmentPredicate callable

    Raises:
        SegmentRuleError: empty rule list or a value that cannot be coerced
    """
    if not conditions:
        raise SegmentRuleError("Segment must have at least one condition")

    try:
        combinator = Combinator(combinator)
    except ValueError:
        raise SegmentRuleError(f"Unknown combinator: {combinator!r}")

    matchers = [_compile_condition(i, c) for i, c in enumerate(conditions)]
    predicate = SegmentPredicate(conditions, combinator, matchers, clock or _utcnow)
    logger.debug(f"Compiled {predicate!r}")
    return predicate


__all__ = ["SegmentPredicate", "compile_segment"]
