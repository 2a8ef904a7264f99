# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Configuration from environment variables with validation."""

import logging
import os

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid."""


class Config:
    def __init__(self):
        # Device inventory and SNMP defaults
        self.ups_config_file = os.environ.get("UPS_CONFIG_FILE", "/data/ups-config.json")
        self.community = os.environ.get("UPS_COMMUNITY", "public")
        self.snmp_port = self._int("UPS_SNMP_PORT", "161", 1, 65535)
        self.snmp_timeout = self._float("MONITOR_SNMP_TIMEOUT", "5.0", 0.5, 60)
        self.snmp_retries = self._int("MONITOR_SNMP_RETRIES", "1", 0, 5)

        self.poll_interval = self._float("MONITOR_POLL_INTERVAL", "300", 5, 86400)
        self.poll_start_delay = self._float("MONITOR_POLL_START_DELAY", "10", 0, 600)
        self.mock_mode = self._bool("MONITOR_MOCK_MODE", "false")
        self.log_level = os.environ.get("MONITOR_LOG_LEVEL", "INFO").upper()

        self.history_db = os.environ.get("MONITOR_HISTORY_DB", "/data/ups-history.sqlite")
        self.web_port = self._int("MONITOR_WEB_PORT", "3001", 1, 65535)

        # Network discovery
        self.auto_discovery = self._bool("AUTO_DISCOVERY", "true")
        self.discovery_interval = self._float("DISCOVERY_INTERVAL", "3600", 60, 86400 * 7)
        self.discovery_start_delay = self._float("DISCOVERY_START_DELAY", "5", 0, 600)
        self.discovery_subnet = os.environ.get("DISCOVERY_SUBNET", "10.40.40")
        self.discovery_start = self._int("DISCOVERY_START", "2", 1, 254)
        self.discovery_end = self._int("DISCOVERY_END", "30", 1, 254)
        self.discovery_timeout = self._float("DISCOVERY_TIMEOUT", "2.0", 0.1, 30)

        # Daily digest (empty disables)
        self.summary_time = os.environ.get("SUMMARY_TIME", "08:00").strip()
        self.summary_hour, self.summary_minute = self._parse_hhmm(self.summary_time)

        # Notification transports (all empty = notifications disabled)
        self.telegram_bot_token = os.environ.get("TELEGRAM_BOT_TOKEN", "")
        self.telegram_chat_id = os.environ.get("TELEGRAM_CHAT_ID", "")
        self.mqtt_broker = os.environ.get("MQTT_BROKER", "")
        self.mqtt_port = self._int("MQTT_PORT", "1883", 1, 65535)
        self.mqtt_topic = os.environ.get("MQTT_TOPIC", "ups/notifications")
        self.mqtt_username = os.environ.get("MQTT_USERNAME", "")
        self.mqtt_password = os.environ.get("MQTT_PASSWORD", "")

        if self.discovery_start > self.discovery_end:
            raise ConfigError(
                f"DISCOVERY_START={self.discovery_start} is greater than "
                f"DISCOVERY_END={self.discovery_end}"
            )
        parts = self.discovery_subnet.split(".")
        if len(parts) != 3 or not all(p.isdigit() and 0 <= int(p) <= 255 for p in parts):
            raise ConfigError(
                f"DISCOVERY_SUBNET must be three octets like 10.40.40, got {self.discovery_subnet!r}"
            )
        if any(c in self.mqtt_topic for c in "#+"):
            raise ConfigError(f"MQTT_TOPIC contains wildcard characters: {self.mqtt_topic!r}")

        self._log_config()

    @staticmethod
    def _int(env: str, default: str, min_val: int, max_val: int) -> int:
        raw = os.environ.get(env, default)
        try:
            val = int(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid integer")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    @staticmethod
    def _float(env: str, default: str, min_val: float, max_val: float) -> float:
        raw = os.environ.get(env, default)
        try:
            val = float(raw)
        except (ValueError, TypeError):
            raise ConfigError(f"{env}={raw!r} is not a valid number")
        if not (min_val <= val <= max_val):
            raise ConfigError(f"{env}={val} out of range [{min_val}, {max_val}]")
        return val

    @staticmethod
    def _bool(env: str, default: str) -> bool:
        return os.environ.get(env, default).lower() in ("true", "1", "yes")

    @staticmethod
    def _parse_hhmm(raw: str) -> tuple[int | None, int | None]:
        if not raw:
            return None, None
        try:
            hour_str, minute_str = raw.split(":")
            hour, minute = int(hour_str), int(minute_str)
        except ValueError:
            raise ConfigError(f"SUMMARY_TIME={raw!r} is not in HH:MM format")
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ConfigError(f"SUMMARY_TIME={raw!r} out of range")
        return hour, minute

    @property
    def summary_enabled(self) -> bool:
        return self.summary_hour is not None

    def _log_config(self):
        logger.info(
            "Config: inventory=%s mock=%s poll=%.0fs history=%s web=%d "
            "discovery=%s (%s.%d-%d) summary=%s",
            self.ups_config_file, self.mock_mode, self.poll_interval,
            self.history_db, self.web_port, self.auto_discovery,
            self.discovery_subnet, self.discovery_start, self.discovery_end,
            self.summary_time or "off",
        )
