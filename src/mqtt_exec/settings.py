"""Process settings loaded from ``MQTT_*`` environment variables.

Every setting can also be passed explicitly (the CLI does this for its
options); explicit values win over the environment, which wins over the
defaults below.

    MQTT_HOST=ssl://broker:8883 MQTT_QOS=1 mqtt-exec run
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Dispatcher settings.

    Fields
    ──────
    host            : Broker URL (tcp://, ssl://, ws://, ...)
    cid             : MQTT client id
    username        : Broker username (empty: anonymous)
    password        : Broker password
    qos             : Default QoS for entries without a valid hint
    config          : Path of the YAML entry document
    keepalive       : MQTT keepalive interval in seconds
    connect_timeout : Seconds to wait for the broker's CONNACK
    max_workers     : Threads delivering messages to entry handlers
    log_level       : structlog level
    log_format      : console or json
    """

    model_config = SettingsConfigDict(
        env_prefix="MQTT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Broker ───────────────────────────────────────────────────
    host: str = "tcp://localhost:1883"
    cid: str = "mqtt-exec"
    username: str = ""
    password: str = ""
    qos: int = Field(default=2, ge=0, le=2)
    keepalive: int = Field(default=60, ge=1)
    connect_timeout: float = Field(default=10.0, gt=0)

    # ── Entries ──────────────────────────────────────────────────
    config: Path = Path("config.yaml")
    max_workers: int = Field(default=32, ge=1)

    # ── Observability ────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"
