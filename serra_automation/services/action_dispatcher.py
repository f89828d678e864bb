"""
Action dispatcher: hands winning actions to the actuator command queue.

Two queue backends are available. ``DatabaseCommandQueue`` inserts a
``pending`` row into ``actuator_commands`` that devices poll for.
``MqttCommandQueue`` publishes the command to ``serra/<device>/commands``
after recording it, and marks the row ``delivered`` once the broker
acknowledges it or ``failed`` when it does not. Both raise
``DispatchFailure``; the caller records the failure and moves on, nothing
is retried here.
"""

from __future__ import annotations

import datetime
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import paho.mqtt.client as mqtt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import DispatchFailure
from ..models.command import ActuatorCommand
from ..models.device import Actuator
from ..models.rule import ActionKind, ActuatorState, AutomationRule, RuleAction


logger = logging.getLogger("action_dispatcher")


class CommandQueue(Protocol):
    def enqueue(
        self,
        actuator_id: str,
        action_kind: ActionKind,
        value: Optional[float],
        *,
        rule_id: Optional[str] = None,
        timeout_sec: float,
    ) -> str:
        ...


@dataclass(frozen=True)
class Command:
    kind: ActionKind
    value: Optional[float]


def command_for(action: RuleAction, *, reset: bool) -> Command:
    """
    Command to send for ``action``.

    ``reset`` is the hysteresis off transition, which sends the complement
    of the configured action.
    """
    kind = ActionKind(action.action_type)
    if not reset:
        value = float(action.action_value) if kind == ActionKind.SET_VALUE and action.action_value is not None else None
        return Command(kind, value)
    if kind == ActionKind.OFF:
        return Command(ActionKind.ON, None)
    return Command(ActionKind.OFF, None)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DatabaseCommandQueue:
    """Durable queue over ``actuator_commands``; rows start as ``pending``."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def enqueue(
        self,
        actuator_id: str,
        action_kind: ActionKind,
        value: Optional[float],
        *,
        rule_id: Optional[str] = None,
        timeout_sec: float,
    ) -> str:
        # The insert is local; ``timeout_sec`` only bounds remote backends.
        try:
            with self.db.begin_nested():
                command = ActuatorCommand(
                    actuator_id=actuator_id,
                    command_type=action_kind.value,
                    value=value,
                    status="pending",
                    rule_id=rule_id,
                    created_at=_now(),
                )
                self.db.add(command)
                self.db.flush()
        except SQLAlchemyError as exc:
            raise DispatchFailure(actuator_id, f"database enqueue failed: {exc}") from exc
        return command.id


def _mqtt_protocol():
    protocol = (settings.mqtt_protocol or "v311").lower()
    if protocol == "v31":
        return mqtt.MQTTv31
    if protocol == "v5":
        return mqtt.MQTTv5
    return mqtt.MQTTv311


def _default_client_factory() -> mqtt.Client:
    client = mqtt.Client(client_id=f"serra-commands-{id(object())}", clean_session=True, protocol=_mqtt_protocol())
    if settings.mqtt_username:
        client.username_pw_set(settings.mqtt_username, settings.mqtt_password)
    return client


class MqttCommandQueue:
    """Publishes commands to the device topic and records delivered ones."""

    def __init__(self, db: Session, client_factory: Callable[[], mqtt.Client] | None = None) -> None:
        self.db = db
        self.client_factory = client_factory or _default_client_factory

    def _publish(self, topic: str, payload: dict, timeout_sec: float, actuator_id: str) -> None:
        client = self.client_factory()
        try:
            client.connect(settings.mqtt_broker_host, settings.mqtt_broker_port, keepalive=30)
            client.loop_start()
            info = client.publish(topic, json.dumps(payload), qos=1)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise DispatchFailure(actuator_id, f"publish rejected rc={info.rc}")
            info.wait_for_publish(timeout=timeout_sec)
            if not info.is_published():
                raise DispatchFailure(actuator_id, f"publish not acknowledged within {timeout_sec}s")
        except DispatchFailure:
            raise
        except (OSError, ValueError, RuntimeError) as exc:
            raise DispatchFailure(actuator_id, f"mqtt publish failed: {exc}") from exc
        finally:
            try:
                client.loop_stop()
                client.disconnect()
            except Exception as exc:
                logger.warning("MQTT command client shutdown failed: %s", exc)

    def enqueue(
        self,
        actuator_id: str,
        action_kind: ActionKind,
        value: Optional[float],
        *,
        rule_id: Optional[str] = None,
        timeout_sec: float,
    ) -> str:
        actuator = self.db.get(Actuator, actuator_id)
        if actuator is None:
            raise DispatchFailure(actuator_id, "unknown actuator")
        now = _now()
        command = ActuatorCommand(
            actuator_id=actuator_id,
            command_type=action_kind.value,
            value=value,
            status="pending",
            rule_id=rule_id,
            created_at=now,
        )
        # Assign the id up front so the device can acknowledge against it.
        command.id = str(uuid.uuid4())
        payload = {
            "command_id": command.id,
            "actuator_id": actuator_id,
            "command_type": action_kind.value,
            "value": value,
            "rule_id": rule_id,
            "timestamp_utc": now.isoformat(),
        }
        # The audit row exists before anything reaches the device.
        try:
            with self.db.begin_nested():
                self.db.add(command)
                self.db.flush()
        except SQLAlchemyError as exc:
            raise DispatchFailure(actuator_id, f"command audit row failed: {exc}") from exc
        try:
            self._publish(f"serra/{actuator.device_id}/commands", payload, timeout_sec, actuator_id)
        except DispatchFailure:
            command.status = "failed"
            raise
        command.status = "delivered"
        command.delivered_at = _now()
        return command.id


class ActionDispatcher:
    def __init__(self, queue: CommandQueue, timeout_sec: float | None = None) -> None:
        self.queue = queue
        self.timeout_sec = timeout_sec if timeout_sec is not None else settings.command_enqueue_timeout_sec

    def dispatch(self, rule: AutomationRule, action: RuleAction, desired_state: ActuatorState) -> str:
        reset = rule.has_hysteresis and desired_state == ActuatorState.OFF
        command = command_for(action, reset=reset)
        command_id = self.queue.enqueue(
            action.actuator_id,
            command.kind,
            command.value,
            rule_id=rule.id,
            timeout_sec=self.timeout_sec,
        )
        logger.info(
            "Enqueued command id=%s rule_id=%s actuator_id=%s command=%s value=%s",
            command_id,
            rule.id,
            action.actuator_id,
            command.kind.value,
            command.value,
        )
        return command_id


def build_command_queue(db: Session) -> CommandQueue:
    if settings.command_queue_backend == "mqtt":
        return MqttCommandQueue(db)
    return DatabaseCommandQueue(db)
