import pytest
from pydantic import ValidationError

from conftest import make_rule
from serra_automation.core.errors import RuleConfigurationError
from serra_automation.schemas.rule import ActionIn, ConditionGroupIn, ConditionIn, RuleCreate, ScheduleIn, validate_rule_create


def _payload(**overrides) -> RuleCreate:
    data = dict(
        owner_id="owner-1",
        name="rule",
        condition_groups=[ConditionGroupIn(group_order=0, conditions=[ConditionIn(sensor_id="temp-1", operator="gt", value=30)])],
        actions=[ActionIn(actuator_id="fan_1", action_type="on")],
    )
    data.update(overrides)
    return RuleCreate(**data)


def test_valid_rule_has_no_errors():
    assert validate_rule_create(_payload()) == []


def test_priority_outside_range_is_rejected():
    with pytest.raises(ValidationError):
        _payload(priority=1001)


def test_state_change_interval_floor():
    with pytest.raises(ValidationError):
        _payload(min_state_change_interval_seconds=5)


def test_hysteresis_needs_distinct_pair():
    assert "Hysteresis requires both on_threshold and off_threshold" in validate_rule_create(_payload(on_threshold=20))
    assert "Hysteresis thresholds must be distinct" in validate_rule_create(_payload(on_threshold=20, off_threshold=20))


def test_between_requires_ordered_bounds():
    group = ConditionGroupIn(conditions=[ConditionIn(sensor_id="temp-1", operator="between", value=30, value_max=20)])

    assert "Maximum value must be greater than minimum value" in validate_rule_create(_payload(condition_groups=[group]))


def test_set_value_requires_value_in_range():
    missing = _payload(actions=[ActionIn(actuator_id="fan_1", action_type="set_value")])
    too_high = _payload(actions=[ActionIn(actuator_id="fan_1", action_type="set_value", action_value=120)])

    assert "Value is required for Set Value action" in validate_rule_create(missing)
    assert "Value must be between 0 and 100" in validate_rule_create(too_high)


def test_one_action_per_actuator():
    payload = _payload(actions=[ActionIn(actuator_id="fan_1", action_type="on"), ActionIn(actuator_id="fan_1", action_type="off")])

    assert "At most one action per actuator is allowed" in validate_rule_create(payload)


def test_rule_needs_conditions_or_schedule():
    assert validate_rule_create(_payload(condition_groups=[])) == ["A rule needs at least one condition group or a schedule"]
    scheduled = _payload(condition_groups=[], schedule=ScheduleIn(schedule_type="daily", time_of_day="07:00"))
    assert validate_rule_create(scheduled) == []


def test_weekly_schedule_needs_valid_days():
    errors = validate_rule_create(_payload(schedule=ScheduleIn(schedule_type="weekly", days_of_week=[7])))

    assert "Days of week must be between 0 (Sunday) and 6 (Saturday)" in errors


def test_create_rule_rejects_invalid_definition(db):
    with pytest.raises(RuleConfigurationError):
        make_rule(db, "bad", groups=[[("temp-1", "gt", 30)]], on_threshold=10)
