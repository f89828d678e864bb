import pytest

from serra_automation.core.errors import RuleConfigurationError
from serra_automation.models.rule import AutomationRule, Operator, RuleAction, RuleCondition, RuleConditionGroup
from serra_automation.services.condition_evaluator import ConditionEvaluator, compare


class _Values:
    def __init__(self, values):
        self.values = values
        self.calls = []

    def latest_value(self, sensor_id):
        self.calls.append(sensor_id)
        return self.values.get(sensor_id)


def _rule(*groups) -> AutomationRule:
    rule = AutomationRule(id="rule-1", owner_id="owner-1", name="test", priority=0)
    for group_order, conditions in enumerate(groups):
        group = RuleConditionGroup(group_order=group_order)
        for order, (sensor_id, operator, value, *rest) in enumerate(conditions):
            group.conditions.append(
                RuleCondition(
                    id=f"c-{group_order}-{order}",
                    sensor_id=sensor_id,
                    operator=operator,
                    value=value,
                    value_max=rest[0] if rest else None,
                    condition_order=order,
                )
            )
        rule.condition_groups.append(group)
    rule.actions.append(RuleAction(actuator_id="fan_1", action_type="on"))
    return rule


def test_and_within_group_requires_every_condition():
    rule = _rule([("temp-1", "gt", 30), ("hum-1", "gt", 70)])

    assert ConditionEvaluator(_Values({"hum-1": 80})).evaluate(rule, "temp-1", 35).matched is True
    assert ConditionEvaluator(_Values({"hum-1": 60})).evaluate(rule, "temp-1", 35).matched is False


def test_or_across_groups_matches_any_group():
    rule = _rule([("temp-1", "gt", 30), ("hum-1", "gt", 70)], [("temp-1", "gt", 40)])

    result = ConditionEvaluator(_Values({"hum-1": 50})).evaluate(rule, "temp-1", 41)
    assert result.matched is True

    result = ConditionEvaluator(_Values({"hum-1": 50})).evaluate(rule, "temp-1", 35)
    assert result.matched is False


def test_first_matching_group_short_circuits_the_rest():
    rule = _rule([("temp-1", "gt", 30)], [("hum-1", "gt", 70)])
    values = _Values({"hum-1": 80})

    assert ConditionEvaluator(values).evaluate(rule, "temp-1", 35).matched is True
    assert values.calls == []


def test_missing_value_is_false_and_reported():
    rule = _rule([("temp-1", "gt", 30), ("hum-1", "gt", 70)])

    result = ConditionEvaluator(_Values({})).evaluate(rule, "temp-1", 35)

    assert result.matched is False
    assert result.missing_data is True
    assert result.missing_sensor_ids == ["hum-1"]


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_value_is_treated_as_missing(bad):
    rule = _rule([("temp-1", "neq", 20)], [("hum-1", "lt", 1000)])

    result = ConditionEvaluator(_Values({"hum-1": bad})).evaluate(rule, "temp-1", bad)

    assert result.matched is False
    assert result.missing_sensor_ids == ["temp-1", "hum-1"]


def test_triggering_sensor_uses_triggering_value_not_stored_value():
    rule = _rule([("temp-1", "gt", 30)])

    result = ConditionEvaluator(_Values({"temp-1": 10})).evaluate(rule, "temp-1", 35)

    assert result.matched is True


def test_latest_values_are_cached_per_pass():
    rule_a = _rule([("hum-1", "gt", 70)])
    rule_b = _rule([("hum-1", "lt", 90)])
    values = _Values({"hum-1": 80})
    evaluator = ConditionEvaluator(values)

    assert evaluator.evaluate(rule_a, "temp-1", 20).matched is True
    assert evaluator.evaluate(rule_b, "temp-1", 20).matched is True
    assert values.calls == ["hum-1"]


@pytest.mark.parametrize(
    "value,expected",
    [(20, True), (25, True), (30, True), (19.9, False), (30.1, False)],
)
def test_between_is_inclusive(value, expected):
    rule = _rule([("temp-1", "between", 20, 30)])

    assert ConditionEvaluator(_Values({})).evaluate(rule, "temp-1", value).matched is expected


def test_every_operator_has_a_comparison():
    assert compare(Operator.GT, 2, 1)
    assert compare(Operator.LT, 1, 2)
    assert compare(Operator.GTE, 2, 2)
    assert compare(Operator.LTE, 2, 2)
    assert compare(Operator.EQ, 2, 2)
    assert compare(Operator.NEQ, 2, 3)
    assert compare(Operator.BETWEEN, 2, 1, 3)


def test_unknown_operator_is_a_configuration_error():
    rule = _rule([("temp-1", "approx", 30)])

    with pytest.raises(RuleConfigurationError):
        ConditionEvaluator(_Values({})).evaluate(rule, "temp-1", 30)


def test_between_without_upper_bound_is_a_configuration_error():
    rule = _rule([("temp-1", "between", 30)])

    with pytest.raises(RuleConfigurationError):
        ConditionEvaluator(_Values({})).evaluate(rule, "temp-1", 30)


def test_rule_without_groups_never_matches_a_reading():
    rule = _rule()

    assert ConditionEvaluator(_Values({})).evaluate(rule, "temp-1", 30).matched is False
