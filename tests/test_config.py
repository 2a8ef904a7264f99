# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Unit tests for environment configuration."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "collector"))

from ups_monitor.config import Config, ConfigError

ENV_VARS = [
    "UPS_CONFIG_FILE", "UPS_COMMUNITY", "UPS_SNMP_PORT", "MONITOR_SNMP_TIMEOUT",
    "MONITOR_SNMP_RETRIES", "MONITOR_POLL_INTERVAL", "MONITOR_POLL_START_DELAY",
    "MONITOR_MOCK_MODE", "MONITOR_LOG_LEVEL", "MONITOR_HISTORY_DB", "MONITOR_WEB_PORT",
    "AUTO_DISCOVERY", "DISCOVERY_INTERVAL", "DISCOVERY_START_DELAY", "DISCOVERY_SUBNET",
    "DISCOVERY_START", "DISCOVERY_END", "DISCOVERY_TIMEOUT", "SUMMARY_TIME",
    "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "MQTT_BROKER", "MQTT_PORT",
    "MQTT_TOPIC", "MQTT_USERNAME", "MQTT_PASSWORD",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


class TestDefaults:
    def test_defaults(self):
        cfg = Config()
        assert cfg.ups_config_file == "/data/ups-config.json"
        assert cfg.community == "public"
        assert cfg.snmp_port == 161
        assert cfg.poll_interval == 300
        assert cfg.poll_start_delay == 10
        assert cfg.history_db == "/data/ups-history.sqlite"
        assert cfg.web_port == 3001
        assert cfg.auto_discovery is True
        assert cfg.discovery_interval == 3600
        assert cfg.discovery_subnet == "10.40.40"
        assert (cfg.discovery_start, cfg.discovery_end) == (2, 30)
        assert cfg.discovery_timeout == 2.0
        assert (cfg.summary_hour, cfg.summary_minute) == (8, 0)
        assert cfg.summary_enabled
        assert cfg.mock_mode is False


class TestOverrides:
    def test_auto_discovery_disabled(self, monkeypatch):
        monkeypatch.setenv("AUTO_DISCOVERY", "false")
        assert Config().auto_discovery is False

    def test_summary_time(self, monkeypatch):
        monkeypatch.setenv("SUMMARY_TIME", "21:45")
        cfg = Config()
        assert (cfg.summary_hour, cfg.summary_minute) == (21, 45)

    def test_empty_summary_time_disables(self, monkeypatch):
        monkeypatch.setenv("SUMMARY_TIME", "")
        assert not Config().summary_enabled

    def test_mock_mode(self, monkeypatch):
        monkeypatch.setenv("MONITOR_MOCK_MODE", "1")
        assert Config().mock_mode is True


class TestValidation:
    @pytest.mark.parametrize("var,value", [
        ("UPS_SNMP_PORT", "0"),
        ("UPS_SNMP_PORT", "abc"),
        ("MONITOR_POLL_INTERVAL", "1"),
        ("MONITOR_WEB_PORT", "70000"),
        ("DISCOVERY_TIMEOUT", "fast"),
        ("SUMMARY_TIME", "8am"),
        ("SUMMARY_TIME", "25:00"),
        ("DISCOVERY_SUBNET", "10.40"),
        ("DISCOVERY_SUBNET", "10.40.400"),
        ("MQTT_TOPIC", "ups/#"),
    ])
    def test_invalid_values(self, monkeypatch, var, value):
        monkeypatch.setenv(var, value)
        with pytest.raises(ConfigError):
            Config()

    def test_start_after_end(self, monkeypatch):
        monkeypatch.setenv("DISCOVERY_START", "40")
        monkeypatch.setenv("DISCOVERY_END", "30")
        with pytest.raises(ConfigError):
            Config()
