# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 MIT License

"""Notification transports: Telegram bot, MQTT topic, or nothing.

Every transport exposes ``send(text)``. Sends never raise; failures are
logged and counted. Callers that must not wait on delivery use
:func:`fire_and_forget`.
"""

import asyncio
import logging
import time
from typing import Protocol, runtime_checkable

import aiohttp
import paho.mqtt.client as mqtt

from .config import Config

logger = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"
TELEGRAM_TIMEOUT = 10

# Strong refs to in-flight sends so they are not garbage collected
_pending_sends: set[asyncio.Task] = set()


@runtime_checkable
class NotificationTransport(Protocol):
    async def send(self, text: str) -> bool:
        """Deliver one message. Returns True if it was handed off."""
        ...

    def get_status(self) -> dict:
        ...

    async def close(self) -> None:
        ...


class NullTransport:
    """Used when no transport credentials are configured."""

    async def send(self, text: str) -> bool:
        logger.debug("Notifications disabled, dropping: %s", text)
        return False

    def get_status(self) -> dict:
        return {"type": "none", "enabled": False}

    async def close(self):
        pass


class _CountingTransport:
    def __init__(self):
        self._total_sends = 0
        self._failed_sends = 0
        self._last_error: str | None = None
        self._last_send_time: float | None = None

    def _ok(self):
        self._total_sends += 1
        self._last_send_time = time.time()

    def _fail(self, msg: str):
        self._total_sends += 1
        self._failed_sends += 1
        self._last_error = msg
        logger.error("Notification failed: %s", msg)

    def _status(self) -> dict:
        return {
            "enabled": True,
            "total_sends": self._total_sends,
            "failed_sends": self._failed_sends,
            "last_send": self._last_send_time,
            "last_error": self._last_error,
        }


class TelegramTransport(_CountingTransport):
    """Sends messages through the Telegram Bot API."""

    def __init__(self, bot_token: str, chat_id: str,
                 session: aiohttp.ClientSession | None = None):
        super().__init__()
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=TELEGRAM_TIMEOUT),
            )
            self._owns_session = True
        return self._session

    async def send(self, text: str) -> bool:
        url = f"{TELEGRAM_API}/bot{self._bot_token}/sendMessage"
        payload = {"chat_id": self._chat_id, "text": text}
        try:
            async with self._get_session().post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    self._fail(f"Telegram HTTP {resp.status}: {body[:200]}")
                    return False
        except Exception as e:
            self._fail(f"Telegram request error: {e!r}")
            return False
        self._ok()
        return True

    def get_status(self) -> dict:
        status = self._status()
        status["type"] = "telegram"
        status["chat_id"] = self._chat_id
        return status

    async def close(self):
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class MQTTTransport(_CountingTransport):
    """Publishes each message as a plain-text payload on one topic."""

    def __init__(self, broker: str, port: int = 1883, topic: str = "ups/notifications",
                 username: str = "", password: str = "", client_id: str = "ups-monitor"):
        super().__init__()
        self._broker = broker
        self._port = port
        self._topic = topic
        self._connected = False
        self._reconnect_count = 0
        self._last_connect_time: float | None = None

        self.client = mqtt.Client(
            client_id=client_id,
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        )
        if username:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        # Auto-reconnect with backoff
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)

    def connect(self):
        logger.info("Connecting to MQTT broker %s:%d", self._broker, self._port)
        try:
            self.client.connect_async(self._broker, self._port, keepalive=60)
            self.client.loop_start()
        except Exception:
            logger.exception("Failed to connect to MQTT broker")

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        logger.info("MQTT connected (rc=%s)", reason_code)
        if self._last_connect_time is not None:
            self._reconnect_count += 1
        self._connected = True
        self._last_connect_time = time.time()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        logger.warning("MQTT disconnected (rc=%s)", reason_code)
        self._connected = False

    async def send(self, text: str) -> bool:
        try:
            info = self.client.publish(self._topic, text, qos=1)
        except Exception as e:
            self._fail(f"MQTT publish exception: {e!r}")
            return False
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._fail(f"MQTT publish failed (rc={info.rc}, topic={self._topic})")
            return False
        self._ok()
        return True

    def get_status(self) -> dict:
        status = self._status()
        status.update({
            "type": "mqtt",
            "broker": self._broker,
            "port": self._port,
            "topic": self._topic,
            "connected": self._connected,
            "reconnect_count": self._reconnect_count,
        })
        return status

    async def close(self):
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception:
            logger.debug("Error closing MQTT client", exc_info=True)


def build_transport(config: Config) -> NotificationTransport:
    """Pick a transport from config: Telegram, then MQTT, else disabled."""
    if config.telegram_bot_token and config.telegram_chat_id:
        logger.info("Notifications via Telegram (chat %s)", config.telegram_chat_id)
        return TelegramTransport(config.telegram_bot_token, config.telegram_chat_id)
    if config.mqtt_broker:
        logger.info("Notifications via MQTT topic %s", config.mqtt_topic)
        transport = MQTTTransport(
            config.mqtt_broker, config.mqtt_port, config.mqtt_topic,
            config.mqtt_username, config.mqtt_password,
        )
        transport.connect()
        return transport
    logger.info("No notification transport configured, notifications disabled")
    return NullTransport()


def fire_and_forget(transport: NotificationTransport, text: str) -> asyncio.Task:
    """Schedule a send without waiting for it. Errors are logged only."""

    async def _send():
        try:
            await transport.send(text)
        except Exception:
            logger.exception("Notification transport raised")

    task = asyncio.get_running_loop().create_task(_send())
    _pending_sends.add(task)
    task.add_done_callback(_pending_sends.discard)
    return task
