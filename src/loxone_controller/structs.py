"""Runtime configuration model and the process-wide service registry."""

from __future__ import annotations

import asyncio
import os
from argparse import Namespace
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, cast

import uvloop
import yaml
from pydantic import BaseModel, ValidationError

from loxone_controller.const import (
    ACK_TIMEOUT_MS,
    INFO_FLUSH_INTERVAL_MS,
    LOXONE_GATEWAY_PATH,
    LOXONE_METRICS_ENABLED,
    LOXONE_METRICS_PORT,
    LOXONE_MQTT_CONN_DELAY,
    LOXONE_MQTT_HOST,
    LOXONE_MQTT_PASS,
    LOXONE_MQTT_PORT,
    LOXONE_MQTT_USER,
    LOXONE_STATE_SNAPSHOT_PATH,
    LOXONE_SYNC_FUNCTIONS,
    LOXONE_SYNC_NAMES,
    LOXONE_SYNC_ROOMS,
    LOXONE_TOPIC,
    RECONNECT_DELAY_MS,
    STATUS_SRV_HOST,
    STATUS_SRV_PORT,
    YES_ANSWER,
)
from loxone_controller.logging_abstraction import get_logger

if TYPE_CHECKING:
    from loxone_controller.bridge import LoxoneBridge
    from loxone_controller.mqtt_client import MQTTClient
    from loxone_controller.status_server import StatusServer

logger = get_logger(__name__)


class ControllerEnv(BaseModel):
    """Settings used throughout the application.

    Populated from environment variables (see :meth:`from_environ`) and
    optionally overridden by the YAML config file.
    """

    host: str = "loxone.local"
    port: int = 80
    username: str | None = None
    password: str | None = None
    gateway_path: str = LOXONE_GATEWAY_PATH
    ack_timeout_ms: int = ACK_TIMEOUT_MS
    reconnect_delay_ms: int = RECONNECT_DELAY_MS
    flush_interval_ms: int = INFO_FLUSH_INTERVAL_MS
    sync_rooms: bool = LOXONE_SYNC_ROOMS
    sync_functions: bool = LOXONE_SYNC_FUNCTIONS
    sync_names: bool = LOXONE_SYNC_NAMES
    mqtt_host: str = LOXONE_MQTT_HOST
    mqtt_port: int = LOXONE_MQTT_PORT
    mqtt_user: str | None = LOXONE_MQTT_USER
    mqtt_pass: str | None = LOXONE_MQTT_PASS
    mqtt_topic: str = LOXONE_TOPIC
    mqtt_conn_delay: int = LOXONE_MQTT_CONN_DELAY
    status_srv_host: str = STATUS_SRV_HOST
    status_srv_port: int = STATUS_SRV_PORT
    metrics_enabled: bool = LOXONE_METRICS_ENABLED
    metrics_port: int = LOXONE_METRICS_PORT
    snapshot_path: str = LOXONE_STATE_SNAPSHOT_PATH

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_environ(cls) -> ControllerEnv:
        env = os.environ

        def _bool(name: str, default: bool) -> bool:
            raw = env.get(name)
            return default if raw is None else raw.casefold() in YES_ANSWER

        def _opt(name: str) -> str | None:
            return env.get(name) or None

        values: dict[str, Any] = {
            "host": env.get("LOXONE_HOST", "loxone.local"),
            "port": env.get("LOXONE_PORT", "80"),
            "username": _opt("LOXONE_USERNAME"),
            "password": _opt("LOXONE_PASSWORD"),
            "ack_timeout_ms": env.get("LOXONE_ACK_TIMEOUT_MS", str(ACK_TIMEOUT_MS)),
            "reconnect_delay_ms": env.get("LOXONE_RECONNECT_DELAY_MS", str(RECONNECT_DELAY_MS)),
            "flush_interval_ms": env.get("LOXONE_INFO_FLUSH_INTERVAL_MS", str(INFO_FLUSH_INTERVAL_MS)),
            "sync_rooms": _bool("LOXONE_SYNC_ROOMS", True),
            "sync_functions": _bool("LOXONE_SYNC_FUNCTIONS", True),
            "sync_names": _bool("LOXONE_SYNC_NAMES", False),
            "mqtt_host": env.get("LOXONE_MQTT_HOST", "homeassistant.local"),
            "mqtt_port": env.get("LOXONE_MQTT_PORT", "1883"),
            "mqtt_user": _opt("LOXONE_MQTT_USER"),
            "mqtt_pass": _opt("LOXONE_MQTT_PASS"),
            "mqtt_topic": env.get("LOXONE_TOPIC", "loxone"),
            "mqtt_conn_delay": env.get("LOXONE_MQTT_CONN_DELAY", "10"),
            "status_srv_host": env.get("LOXONE_STATUS_SRV_HOST", STATUS_SRV_HOST),
            "status_srv_port": env.get("LOXONE_STATUS_SRV_PORT", str(STATUS_SRV_PORT)),
            "metrics_enabled": _bool("LOXONE_METRICS_ENABLED", False),
            "metrics_port": env.get("LOXONE_METRICS_PORT", str(LOXONE_METRICS_PORT)),
        }
        return cls.model_validate(values)


def load_config(config_file: Path, base: ControllerEnv) -> ControllerEnv:
    """Overlay the ``loxone`` section of a YAML config file onto ``base``.

    A missing file leaves ``base`` unchanged; an invalid one is logged and
    ignored.
    """
    lp = "load_config:"
    if not config_file.exists():
        logger.debug("%s No config file at %s", lp, config_file)
        return base
    try:
        with config_file.open(encoding="utf-8") as f:
            raw = cast("dict[str, Any] | None", yaml.safe_load(f))
    except (OSError, yaml.YAMLError):
        logger.exception("%s Failed to parse config file: %s", lp, config_file)
        return base

    if not isinstance(raw, dict):
        logger.warning("%s Invalid config structure: expected mapping at root", lp)
        return base
    section = raw.get("loxone", raw)
    if not isinstance(section, dict):
        logger.warning("%s Invalid 'loxone' section in %s", lp, config_file)
        return base

    unknown = sorted(set(section) - set(ControllerEnv.model_fields))
    if unknown:
        logger.warning("%s Ignoring unknown config keys: %s", lp, ", ".join(unknown))
    try:
        merged = ControllerEnv.model_validate(
            {**base.model_dump(), **{k: v for k, v in section.items() if k in ControllerEnv.model_fields}}
        )
    except ValidationError as e:
        logger.error("%s Invalid config values in %s: %s", lp, config_file, e)
        return base
    logger.info("%s Configuration loaded", lp, extra={"config_path": str(config_file)})
    return merged


class GlobalObject:
    """Singleton container for cross-module state and services."""

    bridge: LoxoneBridge | None = None
    mqtt_client: MQTTClient | None = None
    status_server: StatusServer | None = None
    loop: uvloop.Loop | asyncio.AbstractEventLoop | None = None
    tasks: ClassVar[list[asyncio.Task[Any]]] = []
    env: ControllerEnv = ControllerEnv()
    cli_args: Namespace | None = None

    _instance: GlobalObject | None = None

    def __new__(cls, *_args: Any, **_kwargs: Any) -> GlobalObject:
        """Ensure only one GlobalObject instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def reload_env(self) -> None:
        """Re-read the environment (after a dotenv file was loaded)."""
        try:
            self.env = ControllerEnv.from_environ()
        except ValidationError as e:
            logger.error("GlobalObject: Invalid environment, keeping previous settings: %s", e)
