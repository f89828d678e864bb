"""
Hysteresis tracker: per-rule actuator state machine with cooldown.

Rules with an ``(on_threshold, off_threshold)`` pair only change the
actuator when the measured value crosses the set point (``on``) or the
reset point (``off``); values between the two thresholds keep the
current state. Which side is the set point is inferred from the order of
the thresholds:

* ``on_threshold < off_threshold`` (heater style): on at or below
  ``on_threshold``, off at or above ``off_threshold``.
* ``on_threshold > off_threshold`` (cooler style): on at or above
  ``on_threshold``, off at or below ``off_threshold``.

A permitted change additionally requires ``min_state_change_interval``
to have elapsed since the last change. Rules without hysteresis are
admitted on every match and keep the state only as bookkeeping.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..core.errors import RuleConfigurationError
from ..models.execution_log import SkipReason
from ..models.rule import (
    ActionKind,
    ActuatorState,
    AutomationRule,
    DEFAULT_STATE_CHANGE_INTERVAL_SEC,
)
from . import rule_store
from .rule_store import ensure_utc


logger = logging.getLogger("hysteresis")


@dataclass
class Admission:
    permit: bool
    desired_state: ActuatorState
    reason: Optional[SkipReason] = None
    previous_state: ActuatorState = ActuatorState.UNKNOWN
    # Raw column value the decision was based on; used as the CAS predicate.
    previous_change_at: Optional[datetime.datetime] = None
    hysteresis: bool = False
    detail: Optional[str] = None


def armed_state(rule: AutomationRule) -> ActuatorState:
    """State a rule drives its actuators to when it fires."""
    kinds = {action.action_type for action in rule.actions}
    if kinds and kinds == {ActionKind.OFF.value}:
        return ActuatorState.OFF
    return ActuatorState.ON


def _current_state(rule: AutomationRule) -> ActuatorState:
    raw = rule.current_actuator_state or ActuatorState.UNKNOWN.value
    try:
        return ActuatorState(raw)
    except ValueError:
        raise RuleConfigurationError(rule.id, f"unknown actuator state {raw!r}") from None


def _thresholds(rule: AutomationRule) -> tuple[float, float]:
    if rule.on_threshold is None or rule.off_threshold is None:
        raise RuleConfigurationError(rule.id, "hysteresis needs both on_threshold and off_threshold")
    on_t, off_t = float(rule.on_threshold), float(rule.off_threshold)
    if on_t == off_t:
        raise RuleConfigurationError(rule.id, f"hysteresis thresholds must differ (both {on_t})")
    return on_t, off_t


def _interval_seconds(rule: AutomationRule) -> int:
    interval = rule.min_state_change_interval_seconds
    if interval is None or interval < 0:
        return DEFAULT_STATE_CHANGE_INTERVAL_SEC
    return int(interval)


def desired_from_value(
    on_threshold: float,
    off_threshold: float,
    value: float,
    *,
    condition_matched: bool,
    current: ActuatorState,
) -> ActuatorState:
    if on_threshold < off_threshold:
        crossed_on = value <= on_threshold
        crossed_off = value >= off_threshold
    else:
        crossed_on = value >= on_threshold
        crossed_off = value <= off_threshold
    if crossed_on and condition_matched:
        return ActuatorState.ON
    if crossed_off:
        return ActuatorState.OFF
    return current


class HysteresisTracker:
    def admit(
        self,
        rule: AutomationRule,
        condition_matched: bool,
        value: Optional[float],
        now: datetime.datetime,
    ) -> Admission:
        """
        Decide whether ``rule`` may change its actuator state now.

        ``value`` is the hysteresis measurement, or None for scheduled
        ticks, which ask for the armed state unconditionally.
        """
        current = _current_state(rule)
        base = dict(previous_state=current, previous_change_at=rule.last_state_change_at)

        if not rule.has_hysteresis:
            if not condition_matched:
                return Admission(False, current, SkipReason.CONDITIONS_NOT_MET, **base)
            return Admission(True, armed_state(rule), **base)

        on_t, off_t = _thresholds(rule)
        if value is None:
            desired = ActuatorState.ON if condition_matched else current
        else:
            desired = desired_from_value(on_t, off_t, value, condition_matched=condition_matched, current=current)

        if desired == current:
            reason = SkipReason.NO_STATE_CHANGE if condition_matched else SkipReason.CONDITIONS_NOT_MET
            return Admission(False, desired, reason, hysteresis=True, **base)

        if rule.last_state_change_at is not None:
            elapsed = (ensure_utc(now) - ensure_utc(rule.last_state_change_at)).total_seconds()
            interval = _interval_seconds(rule)
            if elapsed < interval:
                return Admission(
                    False,
                    desired,
                    SkipReason.COOLDOWN,
                    hysteresis=True,
                    detail=f"cooldown active: {elapsed:.0f}s of {interval}s since last change",
                    **base,
                )

        return Admission(True, desired, hysteresis=True, **base)

    def commit(self, db: Session, rule: AutomationRule, admission: Admission, now: datetime.datetime) -> bool:
        """
        Persist the admitted state change.

        Hysteresis rules use a compare-and-swap on ``last_state_change_at``;
        False means another pass changed the state after this decision.
        """
        now = ensure_utc(now)
        if not admission.hysteresis:
            changed_at = now if admission.desired_state != admission.previous_state else None
            rule_store.set_state(db, rule.id, new_state=admission.desired_state.value, changed_at=changed_at)
            return True
        swapped = rule_store.compare_and_set_state(
            db,
            rule.id,
            expected_change_at=admission.previous_change_at,
            new_state=admission.desired_state.value,
            changed_at=now,
        )
        if not swapped:
            logger.info("Lost hysteresis state race rule_id=%s desired=%s", rule.id, admission.desired_state.value)
        return swapped

    def revert(self, db: Session, rule: AutomationRule, admission: Admission, now: datetime.datetime) -> None:
        """Undo a committed change whose commands could not be enqueued."""
        if not admission.hysteresis:
            rule_store.restore_state(
                db,
                rule.id,
                state=admission.previous_state.value,
                changed_at=admission.previous_change_at,
            )
            return
        rule_store.compare_and_set_state(
            db,
            rule.id,
            expected_change_at=ensure_utc(now),
            new_state=admission.previous_state.value,
            changed_at=admission.previous_change_at,
        )
