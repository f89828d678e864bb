"""
MQTT consumer for ingesting sensor readings from devices.
"""

from __future__ import annotations

import json
import logging
import threading

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from ..core.config import settings
from ..core.db import SessionLocal
from ..core.errors import ReadingRejected, log_exception
from ..schemas.reading import ReadingIn
from .reading_ingest import handle_incoming_reading


READINGS_TOPIC = "serra/+/readings"


def _device_from_topic(topic: str) -> str | None:
    parts = (topic or "").split("/")
    if len(parts) == 3 and parts[0] == "serra" and parts[2] == "readings":
        return parts[1]
    return None


class MQTTConsumer:
    """MQTT subscriber that feeds readings into the evaluation trigger."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        protocol = (settings.mqtt_protocol or "v311").lower()
        if protocol == "v31":
            mqtt_protocol = mqtt.MQTTv31
        elif protocol == "v5":
            mqtt_protocol = mqtt.MQTTv5
        else:
            mqtt_protocol = mqtt.MQTTv311
        client_id = f"serra-automation-{id(self)}"
        self.logger.info("MQTT client_id=%s protocol=%s", client_id, protocol)
        self.client = mqtt.Client(client_id=client_id, clean_session=True, protocol=mqtt_protocol)
        if settings.mqtt_username:
            self.client.username_pw_set(settings.mqtt_username, settings.mqtt_password)
        self.client.on_connect = self.on_connect  # type: ignore
        self.client.on_message = self.on_message  # type: ignore
        self.client.on_disconnect = self.on_disconnect  # type: ignore
        self.client.reconnect_delay_set(min_delay=1, max_delay=10)
        self._connected = threading.Event()

    def on_connect(self, client: mqtt.Client, userdata, flags, rc) -> None:  # type: ignore
        if rc == 0:
            self.logger.info(
                "Connected to MQTT broker %s:%s",
                settings.mqtt_broker_host,
                settings.mqtt_broker_port,
            )
            client.subscribe(READINGS_TOPIC, qos=1)
            self._connected.set()
        else:
            self.logger.error("Failed to connect to MQTT broker with code %s", rc)

    def on_disconnect(self, client: mqtt.Client, userdata, rc) -> None:  # type: ignore
        self._connected.clear()
        self.logger.warning("MQTT disconnected with return code %s", rc)

    def on_message(self, client: mqtt.Client, userdata, msg) -> None:  # type: ignore
        topic = getattr(msg, "topic", None)
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
            if isinstance(payload, dict) and "device_id" not in payload:
                payload["device_id"] = _device_from_topic(topic)
            reading_in = ReadingIn.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            self.logger.warning(
                "Invalid reading payload topic=%s payload_len=%s err=%s",
                topic,
                len(msg.payload) if getattr(msg, "payload", None) is not None else None,
                exc,
            )
            return
        topic_device = _device_from_topic(topic)
        if topic_device and topic_device != reading_in.device_id:
            self.logger.warning("Reading device_id=%s does not match topic %s; dropped", reading_in.device_id, topic)
            return
        with SessionLocal() as db:
            try:
                handle_incoming_reading(reading_in, db)
            except ReadingRejected as exc:
                self.logger.warning("Reading rejected topic=%s: %s", topic, exc.detail)
            except Exception as exc:
                self.logger.exception("Failed to ingest reading: %s", exc)

    def start(self) -> None:
        try:
            self.client.connect_async(
                settings.mqtt_broker_host,
                settings.mqtt_broker_port,
                keepalive=60,
            )
            self.client.loop_start()
        except Exception as exc:
            self.logger.error(
                "MQTT connection failed for %s:%s (%s)",
                settings.mqtt_broker_host,
                settings.mqtt_broker_port,
                exc,
            )

    def stop(self) -> None:
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception as exc:
            log_exception(self.logger, "MQTT shutdown failed", exc=exc)

    def is_connected(self) -> bool:
        return self._connected.is_set()
