# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 MIT License

"""Unit tests for notification transports with mocked HTTP and MQTT."""

import asyncio
import os
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import paho.mqtt.client as mqtt
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "collector"))

from ups_monitor.notify_transport import (
    MQTTTransport,
    NullTransport,
    TelegramTransport,
    build_transport,
    fire_and_forget,
)


def make_session(status=200, body="", raises=None):
    resp = MagicMock()
    resp.status = status
    resp.text = AsyncMock(return_value=body)
    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=resp)
    cm.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.closed = False
    if raises is not None:
        session.post.side_effect = raises
    else:
        session.post.return_value = cm
    session.close = AsyncMock()
    return session


def make_config(**overrides):
    values = dict(
        telegram_bot_token="", telegram_chat_id="",
        mqtt_broker="", mqtt_port=1883, mqtt_topic="ups/notifications",
        mqtt_username="", mqtt_password="",
    )
    values.update(overrides)
    return SimpleNamespace(**values)


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------

class TestTelegramTransport:
    @pytest.mark.asyncio
    async def test_send_success(self):
        session = make_session()
        transport = TelegramTransport("TOKEN", "12345", session=session)
        assert await transport.send("hello") is True
        url = session.post.call_args[0][0]
        assert url == "https://api.telegram.org/botTOKEN/sendMessage"
        assert session.post.call_args[1]["json"] == {"chat_id": "12345", "text": "hello"}
        status = transport.get_status()
        assert status["type"] == "telegram"
        assert status["total_sends"] == 1
        assert status["failed_sends"] == 0

    @pytest.mark.asyncio
    async def test_http_error_logged_not_raised(self):
        transport = TelegramTransport("TOKEN", "12345",
                                      session=make_session(status=401, body="Unauthorized"))
        assert await transport.send("hello") is False
        status = transport.get_status()
        assert status["failed_sends"] == 1
        assert "401" in status["last_error"]

    @pytest.mark.asyncio
    async def test_network_error_logged_not_raised(self):
        transport = TelegramTransport("TOKEN", "12345",
                                      session=make_session(raises=OSError("unreachable")))
        assert await transport.send("hello") is False
        assert transport.get_status()["failed_sends"] == 1

    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self):
        session = make_session()
        transport = TelegramTransport("TOKEN", "12345", session=session)
        await transport.close()
        session.close.assert_not_awaited()


# ---------------------------------------------------------------------------
# MQTT
# ---------------------------------------------------------------------------

class TestMQTTTransport:
    def _make(self):
        with patch("ups_monitor.notify_transport.mqtt.Client") as client_cls:
            transport = MQTTTransport("broker.local", 1883, "ups/notifications",
                                      username="u", password="p")
        return transport, client_cls.return_value

    def test_credentials_applied(self):
        transport, client = self._make()
        client.username_pw_set.assert_called_once_with("u", "p")

    @pytest.mark.asyncio
    async def test_publish_success(self):
        transport, client = self._make()
        client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
        assert await transport.send("UPS down") is True
        client.publish.assert_called_once_with("ups/notifications", "UPS down", qos=1)

    @pytest.mark.asyncio
    async def test_publish_failure(self):
        transport, client = self._make()
        client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN)
        assert await transport.send("UPS down") is False
        assert transport.get_status()["failed_sends"] == 1

    def test_connect_callbacks_track_state(self):
        transport, client = self._make()
        transport._on_connect(client, None, None, 0, None)
        assert transport.get_status()["connected"] is True
        transport._on_disconnect(client, None, None, 0, None)
        transport._on_connect(client, None, None, 0, None)
        assert transport.get_status()["reconnect_count"] == 1


# ---------------------------------------------------------------------------
# Selection and fire-and-forget
# ---------------------------------------------------------------------------

class TestBuildTransport:
    def test_null_when_unconfigured(self):
        assert isinstance(build_transport(make_config()), NullTransport)

    def test_telegram_preferred(self):
        cfg = make_config(telegram_bot_token="T", telegram_chat_id="1", mqtt_broker="b")
        assert isinstance(build_transport(cfg), TelegramTransport)

    def test_token_without_chat_is_not_telegram(self):
        cfg = make_config(telegram_bot_token="T")
        assert isinstance(build_transport(cfg), NullTransport)

    def test_mqtt(self):
        with patch("ups_monitor.notify_transport.mqtt.Client"):
            transport = build_transport(make_config(mqtt_broker="broker.local"))
        assert isinstance(transport, MQTTTransport)


class TestFireAndForget:
    @pytest.mark.asyncio
    async def test_delivers_in_background(self):
        transport = MagicMock()
        transport.send = AsyncMock(return_value=True)
        task = fire_and_forget(transport, "hi")
        await task
        transport.send.assert_awaited_once_with("hi")

    @pytest.mark.asyncio
    async def test_exception_swallowed(self):
        transport = MagicMock()
        transport.send = AsyncMock(side_effect=RuntimeError("boom"))
        task = fire_and_forget(transport, "hi")
        await task
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_null_transport(self):
        transport = NullTransport()
        assert await transport.send("x") is False
        assert transport.get_status()["enabled"] is False
        await asyncio.sleep(0)
