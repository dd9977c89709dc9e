"""Runtime configuration for the water-quality dashboard service."""
from __future__ import annotations

import uuid
from functools import lru_cache
from typing import Optional
from urllib.parse import urlparse

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_INTERVAL_SECONDS = 1.0
MAX_INTERVAL_SECONDS = 3600.0

WEBSOCKET_SCHEMES = {"ws", "wss"}
TLS_SCHEMES = {"mqtts", "wss"}


def _clamp_interval_seconds(value: float, *, field: str) -> float:
    try:
        parsed = float(value)
    except Exception as exc:
        raise ValueError(f"{field} must be a number") from exc
    if parsed != parsed:  # NaN
        raise ValueError(f"{field} must be a real number")
    return max(MIN_INTERVAL_SECONDS, min(parsed, MAX_INTERVAL_SECONDS))


class Settings(BaseSettings):
    """Environment driven settings with defaults matching the field devices."""

    service_name: str = "aquadash"
    service_version: str = "0.1.0"
    log_level: str = "INFO"
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://127.0.0.1:4317"
    otel_exporter_otlp_headers: Optional[str] = None
    otel_sample_ratio: float = 1.0
    http_host: str = "0.0.0.0"
    http_port: int = Field(default=8000, ge=1, le=65535)

    mqtt_url: str = Field(default="mqtt://127.0.0.1:1883", description="MQTT broker URL (mqtt, mqtts, ws, wss)")
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_client_id_prefix: str = Field(default="aquadash", description="Prefix for the generated MQTT client id")
    mqtt_keepalive_seconds: int = Field(default=60, ge=5)
    mqtt_reconnect_seconds: float = Field(default=5.0, description="Delay between reconnect attempts")

    topic_prefix: str = Field(default="simonair", description="First topic level for device telemetry and commands")

    liveness_interval_seconds: float = Field(default=30.0, description="How often stale devices are swept")
    staleness_seconds: float = Field(default=120.0, description="Seconds without data before a device is offline")
    command_timeout_seconds: float = Field(default=15.0, description="Timeout for acknowledged command publishes")

    calibration_duplicate_tolerance: float = Field(
        default=0.01,
        ge=0.0,
        description="Reference values closer than this are treated as the same calibration point",
    )
    calibration_default_temperature_c: float = Field(
        default=25.0,
        description="Temperature assumed by calibration sessions until the device reports one",
    )
    calibration_r_squared_warning: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="pH fits below this coefficient of determination are flagged to the operator",
    )
    calibration_session_idle_seconds: float = Field(
        default=1800.0,
        ge=0.0,
        description="Calibration sessions untouched for longer than this are closed; 0 keeps them open",
    )

    operator_token: SecretStr | None = Field(
        default=None,
        description="Bearer token required for command endpoints; unset disables the check",
    )

    model_config = SettingsConfigDict(
        env_prefix="AQUADASH_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("liveness_interval_seconds", "mqtt_reconnect_seconds", "command_timeout_seconds")
    @classmethod
    def _clamp_intervals(cls, value: float, info) -> float:
        return _clamp_interval_seconds(value, field=info.field_name)

    @field_validator("staleness_seconds")
    @classmethod
    def _validate_staleness(cls, value: float) -> float:
        parsed = float(value)
        if parsed != parsed or parsed <= 0:
            raise ValueError("staleness_seconds must be a positive number")
        return parsed

    @field_validator("topic_prefix")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        cleaned = value.strip().strip("/")
        if not cleaned or any(c in cleaned for c in "+#"):
            raise ValueError("topic_prefix must be a non-empty topic without wildcards")
        return cleaned

    @property
    def mqtt_host(self) -> str:
        return _parsed_mqtt(self.mqtt_url).hostname or "127.0.0.1"

    @property
    def mqtt_port(self) -> int:
        parsed = _parsed_mqtt(self.mqtt_url)
        if parsed.port:
            return parsed.port
        return {"mqtt": 1883, "mqtts": 8883, "ws": 80, "wss": 443}.get(self.mqtt_scheme, 1883)

    @property
    def mqtt_scheme(self) -> str:
        return (_parsed_mqtt(self.mqtt_url).scheme or "mqtt").lower()

    @property
    def mqtt_transport(self) -> str:
        return "websockets" if self.mqtt_scheme in WEBSOCKET_SCHEMES else "tcp"

    @property
    def mqtt_websocket_path(self) -> Optional[str]:
        if self.mqtt_transport != "websockets":
            return None
        return _parsed_mqtt(self.mqtt_url).path or "/"

    @property
    def mqtt_tls(self) -> bool:
        return self.mqtt_scheme in TLS_SCHEMES

    def mqtt_client_id(self) -> str:
        return f"{self.mqtt_client_id_prefix}_{uuid.uuid4().hex[:8]}"

    def device_topic(self, device_id: str, suffix: str) -> str:
        return f"{self.topic_prefix}/{device_id}/{suffix}"

    @property
    def telemetry_filter(self) -> str:
        return f"{self.topic_prefix}/+/data"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


@lru_cache(maxsize=32)
def _parsed_mqtt(url: str):
    return urlparse(url)
