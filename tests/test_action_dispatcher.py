import json

import pytest
from sqlalchemy import select

from serra_automation.core.errors import DispatchFailure
from serra_automation.models.command import ActuatorCommand
from serra_automation.models.rule import ActionKind, ActuatorState, AutomationRule, RuleAction
from serra_automation.services.action_dispatcher import (
    ActionDispatcher,
    DatabaseCommandQueue,
    MqttCommandQueue,
    command_for,
)


class _FakeInfo:
    def __init__(self, published=True, rc=0):
        self.rc = rc
        self.published = published
        self.timeout = None

    def wait_for_publish(self, timeout=None):
        self.timeout = timeout

    def is_published(self):
        return self.published


class _FakeClient:
    def __init__(self, info=None, connect_error=None):
        self.info = info or _FakeInfo()
        self.connect_error = connect_error
        self.published = []
        self.disconnected = False

    def connect(self, host, port, keepalive=60):
        if self.connect_error:
            raise self.connect_error

    def loop_start(self):
        pass

    def loop_stop(self):
        pass

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, json.loads(payload), qos))
        return self.info

    def disconnect(self):
        self.disconnected = True


def _action(kind, value=None):
    return RuleAction(actuator_id="fan_1", action_type=kind, action_value=value)


def test_command_for_sends_configured_action():
    assert command_for(_action("on"), reset=False).kind == ActionKind.ON
    cmd = command_for(_action("set_value", 70), reset=False)
    assert cmd.kind == ActionKind.SET_VALUE and cmd.value == 70.0


def test_command_for_reset_sends_complement():
    assert command_for(_action("on"), reset=True).kind == ActionKind.OFF
    assert command_for(_action("off"), reset=True).kind == ActionKind.ON
    reset = command_for(_action("set_value", 70), reset=True)
    assert reset.kind == ActionKind.OFF and reset.value is None


def test_database_queue_inserts_pending_command(db):
    command_id = DatabaseCommandQueue(db).enqueue("fan_1", ActionKind.ON, None, rule_id="r1", timeout_sec=2.0)
    db.commit()

    command = db.get(ActuatorCommand, command_id)
    assert command.status == "pending"
    assert command.command_type == "on"
    assert command.rule_id == "r1"


def test_mqtt_queue_publishes_to_device_topic_and_records_delivery(db):
    client = _FakeClient()
    queue = MqttCommandQueue(db, client_factory=lambda: client)

    command_id = queue.enqueue("pump_1", ActionKind.SET_VALUE, 40.0, rule_id="r1", timeout_sec=1.5)
    db.commit()

    topic, payload, qos = client.published[0]
    assert topic == "serra/dev-1/commands"
    assert qos == 1
    assert payload["command_id"] == command_id
    assert payload["command_type"] == "set_value"
    assert payload["value"] == 40.0
    assert client.info.timeout == 1.5
    assert client.disconnected is True
    command = db.get(ActuatorCommand, command_id)
    assert command.status == "delivered"


def test_mqtt_queue_unacknowledged_publish_is_dispatch_failure(db):
    client = _FakeClient(info=_FakeInfo(published=False))
    queue = MqttCommandQueue(db, client_factory=lambda: client)

    with pytest.raises(DispatchFailure) as excinfo:
        queue.enqueue("fan_1", ActionKind.ON, None, timeout_sec=0.1)

    assert "not acknowledged" in excinfo.value.detail
    db.commit()
    assert [c.status for c in db.scalars(select(ActuatorCommand)).all()] == ["failed"]


class _AuditCheckingClient(_FakeClient):
    """Looks up the command row at the moment it is published."""

    def __init__(self, db):
        super().__init__()
        self.db = db
        self.status_at_publish = None

    def publish(self, topic, payload, qos=0):
        command_id = json.loads(payload)["command_id"]
        self.status_at_publish = self.db.get(ActuatorCommand, command_id).status
        return super().publish(topic, payload, qos)


def test_mqtt_queue_records_command_before_publishing(db):
    client = _AuditCheckingClient(db)
    queue = MqttCommandQueue(db, client_factory=lambda: client)

    queue.enqueue("fan_1", ActionKind.ON, None, timeout_sec=0.1)

    assert client.status_at_publish == "pending"


def test_mqtt_queue_connection_error_is_dispatch_failure(db):
    client = _FakeClient(connect_error=ConnectionRefusedError("refused"))
    queue = MqttCommandQueue(db, client_factory=lambda: client)

    with pytest.raises(DispatchFailure):
        queue.enqueue("fan_1", ActionKind.ON, None, timeout_sec=0.1)


def test_mqtt_queue_unknown_actuator_is_dispatch_failure(db):
    queue = MqttCommandQueue(db, client_factory=_FakeClient)

    with pytest.raises(DispatchFailure):
        queue.enqueue("ghost", ActionKind.ON, None, timeout_sec=0.1)


def test_dispatcher_resets_hysteresis_rule_with_complement():
    sent = []

    class _Queue:
        def enqueue(self, actuator_id, action_kind, value, *, rule_id=None, timeout_sec):
            sent.append((actuator_id, action_kind, timeout_sec))
            return "cmd-1"

    rule = AutomationRule(id="r1", owner_id="o", name="heater", on_threshold=15, off_threshold=18)
    dispatcher = ActionDispatcher(_Queue(), timeout_sec=3.0)

    assert dispatcher.dispatch(rule, _action("on"), ActuatorState.OFF) == "cmd-1"
    assert sent == [("fan_1", ActionKind.OFF, 3.0)]
