"""
Condition evaluation for automation rules.

A rule matches when any of its condition groups is fully satisfied (OR
across groups); a group is satisfied when every condition in it holds
(AND within a group). Both levels short-circuit. The triggering sensor is
compared using the value that triggered the pass; every other sensor uses
its latest stored value. A sensor with no known or non-finite value makes
its condition false instead of raising, and is reported back so the caller
can log the pass as skipped for missing data.
"""

from __future__ import annotations

import logging
import math
import operator as op
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol

from ..core.errors import RuleConfigurationError
from ..models.rule import AutomationRule, Operator, RuleCondition


logger = logging.getLogger("condition_evaluator")


class SensorValueStore(Protocol):
    def latest_value(self, sensor_id: str) -> Optional[float]:
        ...


def _between(current: float, low: float, high: Optional[float]) -> bool:
    return low <= current <= high  # type: ignore[operator]


_COMPARATORS: Dict[Operator, Callable[..., bool]] = {
    Operator.GT: lambda current, value, _max: op.gt(current, value),
    Operator.LT: lambda current, value, _max: op.lt(current, value),
    Operator.GTE: lambda current, value, _max: op.ge(current, value),
    Operator.LTE: lambda current, value, _max: op.le(current, value),
    Operator.EQ: lambda current, value, _max: op.eq(current, value),
    Operator.NEQ: lambda current, value, _max: op.ne(current, value),
    Operator.BETWEEN: _between,
}


def parse_operator(raw: str, *, rule_id: str | None = None) -> Operator:
    try:
        return Operator(raw)
    except ValueError:
        raise RuleConfigurationError(rule_id, f"unknown operator {raw!r}") from None


def compare(operator: Operator, current: float, value: float, value_max: Optional[float] = None) -> bool:
    """Apply ``operator``; ``between`` is inclusive on both ends."""
    return bool(_COMPARATORS[operator](current, value, value_max))


@dataclass
class ConditionResult:
    matched: bool
    missing_sensor_ids: List[str] = field(default_factory=list)

    @property
    def missing_data(self) -> bool:
        return bool(self.missing_sensor_ids)


class ConditionEvaluator:
    """
    Evaluates rules against one triggering reading.

    One evaluator is built per evaluation pass; latest values fetched for
    non-triggering sensors are cached for the duration of that pass.
    """

    def __init__(self, values: SensorValueStore) -> None:
        self._values = values
        self._cache: Dict[str, Optional[float]] = {}

    def latest_value(self, sensor_id: str) -> Optional[float]:
        if sensor_id not in self._cache:
            self._cache[sensor_id] = self._values.latest_value(sensor_id)
        return self._cache[sensor_id]

    def _current_value(self, sensor_id: str, triggering_sensor_id: Optional[str], triggering_value: Optional[float]) -> Optional[float]:
        if triggering_sensor_id is not None and sensor_id == triggering_sensor_id:
            current = triggering_value
        else:
            current = self.latest_value(sensor_id)
        # NaN and infinities are treated as unavailable.
        if current is not None and not math.isfinite(current):
            return None
        return current

    def _condition_holds(
        self,
        rule: AutomationRule,
        condition: RuleCondition,
        triggering_sensor_id: Optional[str],
        triggering_value: Optional[float],
        missing: List[str],
    ) -> bool:
        operator = parse_operator(condition.operator, rule_id=rule.id)
        if operator == Operator.BETWEEN and (condition.value_max is None or condition.value_max <= condition.value):
            raise RuleConfigurationError(rule.id, f"condition {condition.id} has an invalid BETWEEN range")
        current = self._current_value(condition.sensor_id, triggering_sensor_id, triggering_value)
        if current is None:
            if condition.sensor_id not in missing:
                missing.append(condition.sensor_id)
            return False
        return compare(operator, float(current), float(condition.value), condition.value_max)

    def evaluate(
        self,
        rule: AutomationRule,
        triggering_sensor_id: Optional[str],
        triggering_value: Optional[float],
    ) -> ConditionResult:
        missing: List[str] = []
        for group in sorted(rule.condition_groups, key=lambda g: g.group_order):
            conditions = sorted(group.conditions, key=lambda c: c.condition_order)
            if not conditions:
                continue
            if all(
                self._condition_holds(rule, condition, triggering_sensor_id, triggering_value, missing)
                for condition in conditions
            ):
                logger.debug("Rule %s matched on group order=%s", rule.id, group.group_order)
                return ConditionResult(matched=True, missing_sensor_ids=missing)
        return ConditionResult(matched=False, missing_sensor_ids=missing)
