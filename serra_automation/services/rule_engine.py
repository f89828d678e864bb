"""
Evaluation trigger: runs one evaluation pass per reading or schedule tick.

A pass moves through LOAD_RULES, EVALUATE_CONDITIONS, APPLY_HYSTERESIS,
RESOLVE_PRIORITY, DISPATCH_ACTIONS and LOG, and ends when every rule it
considered has exactly one execution log entry. Errors in one rule are
contained in that rule's log entry; nothing propagates to the caller.

Passes for the same device are serialised in-process by a per-device lock.
The hysteresis compare-and-swap protects the state against passes running
in other processes.
"""

from __future__ import annotations

import datetime
import enum
import logging
import math
import threading
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import DispatchFailure, RuleConfigurationError, log_exception
from ..models.execution_log import ExecutionStatus, SkipReason, TriggerSource
from ..models.rule import ActionKind, AutomationRule
from . import execution_log, rule_store
from .action_dispatcher import ActionDispatcher, CommandQueue, build_command_queue
from .condition_evaluator import ConditionEvaluator, SensorValueStore
from .hysteresis import Admission, HysteresisTracker
from .priority_resolver import Candidate, resolve
from .rule_store import DatabaseSensorValueStore, ensure_utc


logger = logging.getLogger("rule_engine")


class PassState(str, enum.Enum):
    LOAD_RULES = "load_rules"
    EVALUATE_CONDITIONS = "evaluate_conditions"
    APPLY_HYSTERESIS = "apply_hysteresis"
    RESOLVE_PRIORITY = "resolve_priority"
    DISPATCH_ACTIONS = "dispatch_actions"
    LOG = "log"
    DONE = "done"


@dataclass
class RuleOutcome:
    rule_id: str
    status: ExecutionStatus
    skip_reason: Optional[SkipReason] = None
    command_ids: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def label(self) -> str:
        if self.status == ExecutionStatus.SKIPPED and self.skip_reason:
            return f"skipped:{self.skip_reason.value}"
        return self.status.value


@dataclass
class PassResult:
    trigger_source: TriggerSource
    executed_at: Optional[datetime.datetime] = None
    state: PassState = PassState.LOAD_RULES
    outcomes: List[RuleOutcome] = field(default_factory=list)

    @property
    def command_ids(self) -> List[str]:
        return [command_id for outcome in self.outcomes for command_id in outcome.command_ids]

    def counts(self) -> Dict[str, int]:
        return dict(Counter(outcome.label for outcome in self.outcomes))

    def outcome_for(self, rule_id: str) -> Optional[RuleOutcome]:
        for outcome in self.outcomes:
            if outcome.rule_id == rule_id:
                return outcome
        return None


class DeviceLockRegistry:
    """One lock per device id, created on first use."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield


_DEFAULT_LOCKS = DeviceLockRegistry()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _skipped(rule_id: str, reason: SkipReason, detail: Optional[str] = None) -> RuleOutcome:
    return RuleOutcome(rule_id, ExecutionStatus.SKIPPED, skip_reason=reason, error_message=detail)


class EvaluationTrigger:
    def __init__(
        self,
        db: Session,
        *,
        values: Optional[SensorValueStore] = None,
        queue: Optional[CommandQueue] = None,
        timeout_sec: Optional[float] = None,
        locks: Optional[DeviceLockRegistry] = None,
        tracker: Optional[HysteresisTracker] = None,
    ) -> None:
        self.db = db
        self.values = values or DatabaseSensorValueStore(db)
        self.dispatcher = ActionDispatcher(queue or build_command_queue(db), timeout_sec)
        self.locks = locks or _DEFAULT_LOCKS
        self.tracker = tracker or HysteresisTracker()

    def on_reading(
        self,
        device_id: str,
        sensor_id: str,
        value: float,
        timestamp: datetime.datetime,
    ) -> PassResult:
        # Device clocks can run ahead; the pass clock never passes server time.
        now = min(ensure_utc(timestamp), _utcnow())
        result = PassResult(TriggerSource.READING, executed_at=now)
        with self.locks.hold(device_id):
            owner_id = rule_store.owner_for_device(self.db, device_id)
            if owner_id is None:
                logger.warning("Reading for unknown device_id=%s sensor_id=%s; no rules evaluated", device_id, sensor_id)
                result.state = PassState.DONE
                return result
            rules = rule_store.load_active_rules(self.db, owner_id, rule_store.device_sensor_ids(self.db, device_id))
            logger.debug("Loaded rules device_id=%s owner_id=%s count=%s", device_id, owner_id, len(rules))
            self._run_pass(result, rules, sensor_id, value)
        return result

    def on_scheduled_tick(self, rule_id: str, timestamp: datetime.datetime) -> PassResult:
        now = ensure_utc(timestamp)
        result = PassResult(TriggerSource.SCHEDULE, executed_at=now)
        rule = rule_store.get_rule(self.db, rule_id)
        if rule is None or not rule.is_active:
            logger.info("Scheduled tick for missing or inactive rule_id=%s ignored", rule_id)
            result.state = PassState.DONE
            return result
        with self.locks.hold(rule_store.lock_key_for_rule(self.db, rule)):
            self.db.refresh(rule)
            self._run_pass(result, [rule], None, None)
        return result

    def _enter(self, result: PassResult, state: PassState) -> None:
        result.state = state
        logger.debug("Pass %s source=%s", state.value, result.trigger_source.value)

    def _admit(
        self,
        rule: AutomationRule,
        evaluator: ConditionEvaluator,
        sensor_id: Optional[str],
        value: Optional[float],
        now: datetime.datetime,
    ) -> tuple[Optional[Admission], Optional[RuleOutcome]]:
        if not rule.actions:
            raise RuleConfigurationError(rule.id, "rule has no actions")
        for action in rule.actions:
            try:
                ActionKind(action.action_type)
            except ValueError:
                raise RuleConfigurationError(rule.id, f"unknown action type {action.action_type!r}") from None

        missing = False
        if sensor_id is None:
            # Schedule ticks are an unconditional match.
            matched, measurement = True, None
        else:
            condition = evaluator.evaluate(rule, sensor_id, value)
            matched, missing = condition.matched, condition.missing_data
            measurement = value
            if rule.has_hysteresis:
                primary = rule_store.primary_sensor_id(rule)
                if primary is not None and primary != sensor_id:
                    measurement = evaluator.latest_value(primary)
                if measurement is None or not math.isfinite(measurement):
                    return None, _skipped(rule.id, SkipReason.MISSING_DATA, f"no value for sensor {primary}")

        admission = self.tracker.admit(rule, matched, measurement, now)
        if admission.permit:
            return admission, None
        reason = admission.reason or SkipReason.CONDITIONS_NOT_MET
        if reason == SkipReason.CONDITIONS_NOT_MET and missing:
            reason = SkipReason.MISSING_DATA
        return None, _skipped(rule.id, reason, admission.detail)

    def _run_pass(
        self,
        result: PassResult,
        rules: List[AutomationRule],
        sensor_id: Optional[str],
        value: Optional[float],
    ) -> None:
        now = result.executed_at
        outcomes: Dict[str, RuleOutcome] = {}
        admissions: Dict[str, Admission] = {}
        candidates: List[Candidate] = []
        evaluator = ConditionEvaluator(self.values)

        self._enter(result, PassState.EVALUATE_CONDITIONS)
        self._enter(result, PassState.APPLY_HYSTERESIS)
        for rule in rules:
            try:
                admission, outcome = self._admit(rule, evaluator, sensor_id, value, now)
            except RuleConfigurationError as exc:
                logger.warning("Rule misconfigured rule_id=%s: %s", rule.id, exc.detail)
                outcomes[rule.id] = _skipped(rule.id, SkipReason.INVALID_CONFIGURATION, exc.detail)
                continue
            except Exception as exc:
                log_exception(logger, "Rule evaluation failed", extra={"rule_id": rule.id}, exc=exc)
                outcomes[rule.id] = _skipped(rule.id, SkipReason.INVALID_CONFIGURATION, str(exc))
                continue
            if outcome is not None:
                outcomes[rule.id] = outcome
                continue
            admissions[rule.id] = admission
            candidates.extend(Candidate(rule, action, admission) for action in rule.actions)

        self._enter(result, PassState.RESOLVE_PRIORITY)
        resolution = resolve(candidates)
        for rule_id, beaten_by in resolution.superseded.items():
            outcomes[rule_id] = _skipped(rule_id, SkipReason.SUPERSEDED, f"superseded by rule {', '.join(beaten_by)}")

        self._enter(result, PassState.DISPATCH_ACTIONS)
        for rule in rules:
            if rule.id in outcomes or rule.id not in admissions:
                continue
            try:
                outcomes[rule.id] = self._dispatch_rule(rule, admissions[rule.id], resolution.actions_for(rule.id), now)
            except Exception as exc:
                log_exception(logger, "Rule dispatch failed", extra={"rule_id": rule.id}, exc=exc)
                outcomes[rule.id] = RuleOutcome(rule.id, ExecutionStatus.FAILED, error_message=str(exc))

        self._enter(result, PassState.LOG)
        for rule in rules:
            outcome = outcomes[rule.id]
            result.outcomes.append(outcome)
            execution_log.append_entry(
                self.db,
                rule_id=rule.id,
                status=outcome.status,
                executed_at=now,
                trigger_source=result.trigger_source,
                sensor_id=sensor_id,
                sensor_value=value,
                command_id=outcome.command_ids[0] if outcome.command_ids else None,
                skip_reason=outcome.skip_reason,
                error_message=outcome.error_message,
            )
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            log_exception(logger, "Evaluation pass commit failed", extra={"source": result.trigger_source.value}, exc=exc)
            self.db.rollback()
            result.outcomes = [
                RuleOutcome(outcome.rule_id, ExecutionStatus.FAILED, error_message=f"pass commit failed: {exc}")
                for outcome in result.outcomes
            ]
        self._enter(result, PassState.DONE)
        logger.info(
            "Evaluation pass done source=%s sensor_id=%s rules=%s outcomes=%s",
            result.trigger_source.value,
            sensor_id,
            len(rules),
            result.counts(),
        )

    def _dispatch_rule(
        self,
        rule: AutomationRule,
        admission: Admission,
        winning: List[Candidate],
        now: datetime.datetime,
    ) -> RuleOutcome:
        if not self.tracker.commit(self.db, rule, admission, now):
            return _skipped(rule.id, SkipReason.CONCURRENT_UPDATE, "hysteresis state changed by another pass")

        command_ids: List[str] = []
        errors: List[str] = []
        for candidate in winning:
            try:
                command_ids.append(self.dispatcher.dispatch(rule, candidate.action, admission.desired_state))
            except DispatchFailure as exc:
                logger.warning("Dispatch failed rule_id=%s actuator_id=%s: %s", rule.id, exc.actuator_id, exc.detail)
                errors.append(f"{exc.actuator_id}: {exc.detail}")

        error_message = "; ".join(errors) or None
        if not command_ids:
            self.tracker.revert(self.db, rule, admission, now)
            return RuleOutcome(rule.id, ExecutionStatus.FAILED, error_message=error_message)
        rule_store.record_trigger(self.db, rule.id, now)
        return RuleOutcome(rule.id, ExecutionStatus.SUCCESS, command_ids=command_ids, error_message=error_message)


def on_reading(
    db: Session,
    device_id: str,
    sensor_id: str,
    value: float,
    timestamp: datetime.datetime,
    **kwargs,
) -> PassResult:
    return EvaluationTrigger(db, **kwargs).on_reading(device_id, sensor_id, value, timestamp)


def on_scheduled_tick(db: Session, rule_id: str, timestamp: datetime.datetime, **kwargs) -> PassResult:
    return EvaluationTrigger(db, **kwargs).on_scheduled_tick(rule_id, timestamp)
