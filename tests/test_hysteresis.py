import datetime

import pytest

from serra_automation.core.errors import RuleConfigurationError
from serra_automation.models.execution_log import SkipReason
from serra_automation.models.rule import ActuatorState, AutomationRule, RuleAction
from serra_automation.services.hysteresis import HysteresisTracker, armed_state


T0 = datetime.datetime(2026, 10, 19, 12, 0, 0, tzinfo=datetime.timezone.utc)


def _rule(on=None, off=None, interval=60, actions=("on",)) -> AutomationRule:
    rule = AutomationRule(
        id="rule-1",
        owner_id="owner-1",
        name="heater",
        priority=0,
        on_threshold=on,
        off_threshold=off,
        min_state_change_interval_seconds=interval,
        current_actuator_state=ActuatorState.UNKNOWN.value,
        last_state_change_at=None,
    )
    for i, kind in enumerate(actions):
        rule.actions.append(RuleAction(actuator_id=f"act-{i}", action_type=kind))
    return rule


def _apply(rule, admission, now):
    rule.current_actuator_state = admission.desired_state.value
    rule.last_state_change_at = now


def test_heater_band_switches_only_at_thresholds():
    tracker = HysteresisTracker()
    rule = _rule(on=15, off=18)

    admission = tracker.admit(rule, True, 14.0, T0)
    assert admission.permit and admission.desired_state == ActuatorState.ON
    _apply(rule, admission, T0)

    later = T0 + datetime.timedelta(minutes=5)
    inside = tracker.admit(rule, False, 16.5, later)
    assert not inside.permit
    assert inside.desired_state == ActuatorState.ON

    again = tracker.admit(rule, True, 14.5, later)
    assert not again.permit
    assert again.reason == SkipReason.NO_STATE_CHANGE

    reset = tracker.admit(rule, False, 18.0, later)
    assert reset.permit and reset.desired_state == ActuatorState.OFF
    _apply(rule, reset, later)

    still_off = tracker.admit(rule, False, 17.0, later + datetime.timedelta(minutes=5))
    assert not still_off.permit


def test_cooler_orientation_is_inferred_from_threshold_order():
    tracker = HysteresisTracker()
    rule = _rule(on=28, off=24)

    on = tracker.admit(rule, True, 29.0, T0)
    assert on.permit and on.desired_state == ActuatorState.ON
    _apply(rule, on, T0)

    later = T0 + datetime.timedelta(minutes=2)
    assert not tracker.admit(rule, True, 26.0, later).permit
    off = tracker.admit(rule, False, 23.5, later)
    assert off.permit and off.desired_state == ActuatorState.OFF


def test_on_transition_requires_matching_conditions():
    tracker = HysteresisTracker()
    rule = _rule(on=15, off=18)

    admission = tracker.admit(rule, False, 14.0, T0)

    assert not admission.permit
    assert admission.reason == SkipReason.CONDITIONS_NOT_MET


def test_cooldown_blocks_change_until_interval_elapsed():
    tracker = HysteresisTracker()
    rule = _rule(on=15, off=18, interval=60)
    _apply(rule, tracker.admit(rule, True, 14.0, T0), T0)

    blocked = tracker.admit(rule, False, 19.0, T0 + datetime.timedelta(seconds=10))
    assert not blocked.permit
    assert blocked.reason == SkipReason.COOLDOWN

    allowed = tracker.admit(rule, False, 19.0, T0 + datetime.timedelta(seconds=60))
    assert allowed.permit


def test_naive_state_timestamps_are_treated_as_utc():
    tracker = HysteresisTracker()
    rule = _rule(on=15, off=18, interval=60)
    rule.current_actuator_state = ActuatorState.ON.value
    rule.last_state_change_at = T0.replace(tzinfo=None)

    assert tracker.admit(rule, False, 19.0, T0 + datetime.timedelta(seconds=30)).reason == SkipReason.COOLDOWN


def test_rule_without_hysteresis_is_admitted_on_every_match():
    tracker = HysteresisTracker()
    rule = _rule()

    first = tracker.admit(rule, True, 35.0, T0)
    _apply(rule, first, T0)
    second = tracker.admit(rule, True, 35.0, T0 + datetime.timedelta(seconds=1))

    assert first.permit and second.permit
    assert second.desired_state == ActuatorState.ON
    assert tracker.admit(rule, False, 20.0, T0).reason == SkipReason.CONDITIONS_NOT_MET


def test_armed_state_follows_actions():
    assert armed_state(_rule(actions=("off",))) == ActuatorState.OFF
    assert armed_state(_rule(actions=("set_value",))) == ActuatorState.ON
    assert armed_state(_rule(actions=("off", "on"))) == ActuatorState.ON


def test_schedule_tick_without_value_desires_on():
    tracker = HysteresisTracker()
    rule = _rule(on=15, off=18)

    admission = tracker.admit(rule, True, None, T0)

    assert admission.permit and admission.desired_state == ActuatorState.ON


def test_equal_thresholds_are_a_configuration_error():
    with pytest.raises(RuleConfigurationError):
        HysteresisTracker().admit(_rule(on=20, off=20), True, 19.0, T0)


def test_lone_threshold_is_a_configuration_error():
    with pytest.raises(RuleConfigurationError):
        HysteresisTracker().admit(_rule(on=20), True, 19.0, T0)
