import datetime

from serra_automation.models.rule import ActuatorState, AutomationRule, RuleAction
from serra_automation.services.hysteresis import Admission
from serra_automation.services.priority_resolver import Candidate, priority_key, resolve


T0 = datetime.datetime(2026, 10, 19, 12, 0, 0, tzinfo=datetime.timezone.utc)


def _candidate(rule_id, priority, actuator_id, created_at=T0) -> Candidate:
    rule = AutomationRule(id=rule_id, owner_id="owner-1", name=rule_id, priority=priority, created_at=created_at)
    action = RuleAction(actuator_id=actuator_id, action_type="on", action_order=0)
    return Candidate(rule, action, Admission(True, ActuatorState.ON))


def test_lower_priority_number_wins():
    a = _candidate("irrigation-a", 5, "pump_1")
    b = _candidate("irrigation-b", 20, "pump_1")

    resolution = resolve([b, a])

    assert resolution.winners["pump_1"].rule.id == "irrigation-a"
    assert resolution.superseded == {"irrigation-b": ["irrigation-a"]}


def test_equal_priority_most_recently_created_wins():
    older = _candidate("older", 10, "fan_1", created_at=T0)
    newer = _candidate("newer", 10, "fan_1", created_at=T0 + datetime.timedelta(hours=1))

    resolution = resolve([older, newer])

    assert resolution.winners["fan_1"].rule.id == "newer"
    assert "older" in resolution.superseded


def test_rule_id_breaks_full_ties():
    assert priority_key(_candidate("a", 1, "x").rule) < priority_key(_candidate("b", 1, "x").rule)


def test_actuators_are_resolved_independently():
    a_fan = _candidate("a", 1, "fan_1")
    b_fan = _candidate("b", 2, "fan_1")
    b_pump = Candidate(b_fan.rule, RuleAction(actuator_id="pump_1", action_type="on", action_order=1), b_fan.admission)

    resolution = resolve([a_fan, b_fan, b_pump])

    assert resolution.winners["fan_1"].rule.id == "a"
    assert resolution.winners["pump_1"].rule.id == "b"
    # b won pump_1, so it is not superseded as a whole
    assert resolution.superseded == {}
    assert [c.action.actuator_id for c in resolution.actions_for("b")] == ["pump_1"]


def test_uncontested_actuator_has_single_winner():
    resolution = resolve([_candidate("solo", 500, "heater_1")])

    assert resolution.winners["heater_1"].rule.id == "solo"
    assert resolution.superseded == {}
