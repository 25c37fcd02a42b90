import os

from loxone_controller import __version__

__all__ = [
    "ACK_TIMEOUT_MS",
    "COMMAND_PATH_FMT",
    "ENABLE_STATUS_UPDATES_PATH",
    "INFO_FLUSH_INTERVAL_MS",
    "LOXONE_CONFIG_FILE_PATH",
    "LOXONE_DEBUG",
    "LOXONE_GATEWAY_PATH",
    "LOXONE_LOG_FORMAT",
    "LOXONE_LOG_HUMAN_OUTPUT",
    "LOXONE_LOG_JSON_FILE",
    "LOXONE_METRICS_ENABLED",
    "LOXONE_METRICS_PORT",
    "LOXONE_MQTT_CONN_DELAY",
    "LOXONE_MQTT_HOST",
    "LOXONE_MQTT_PASS",
    "LOXONE_MQTT_PORT",
    "LOXONE_MQTT_USER",
    "LOXONE_SEND_TIMEOUT",
    "LOXONE_STATE_SNAPSHOT_PATH",
    "LOXONE_SYNC_FUNCTIONS",
    "LOXONE_SYNC_NAMES",
    "LOXONE_SYNC_ROOMS",
    "LOXONE_TOPIC",
    "LOXONE_VERSION",
    "MANUAL_CLOSE",
    "MQTT_CLIENT_START_TASK_NAME",
    "PERSISTENT_BASE_DIR",
    "RECONNECT_DELAY_MS",
    "STATUS_SRV_HOST",
    "STATUS_SRV_PORT",
    "STATUS_SRV_START_TASK_NAME",
    "STRUCTURE_FILE_PATH",
    "SUPERVISOR_START_TASK_NAME",
    "YES_ANSWER",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
LOXONE_VERSION: str = __version__


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw or raw.lower() == "null":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).casefold() in YES_ANSWER


# Miniserver connection
LOXONE_GATEWAY_PATH: str = os.environ.get("LOXONE_GATEWAY_PATH", "/ws/gateway")
# seconds to wait for a response to a transport request
LOXONE_SEND_TIMEOUT: int = _env_int("LOXONE_SEND_TIMEOUT", 30)

# Controller request paths
STRUCTURE_FILE_PATH: str = "data/LoxAPP3.json"
ENABLE_STATUS_UPDATES_PATH: str = "jdev/sps/enablebinstatusupdate"
COMMAND_PATH_FMT: str = "jdev/sps/io/{uuid}/{action}"
# Close reason reported by the transport for a deliberate local close
MANUAL_CLOSE: str = "manual"

# Timing (milliseconds)
ACK_TIMEOUT_MS: int = _env_int("LOXONE_ACK_TIMEOUT_MS", 500)
RECONNECT_DELAY_MS: int = _env_int("LOXONE_RECONNECT_DELAY_MS", 5000)
INFO_FLUSH_INTERVAL_MS: int = _env_int("LOXONE_INFO_FLUSH_INTERVAL_MS", 30000)

# Structure sync options
LOXONE_SYNC_ROOMS: bool = _env_bool("LOXONE_SYNC_ROOMS", "true")
LOXONE_SYNC_FUNCTIONS: bool = _env_bool("LOXONE_SYNC_FUNCTIONS", "true")
LOXONE_SYNC_NAMES: bool = _env_bool("LOXONE_SYNC_NAMES", "false")

# MQTT (host platform)
LOXONE_MQTT_HOST: str = os.environ.get("LOXONE_MQTT_HOST", "homeassistant.local")
LOXONE_MQTT_PORT: int = _env_int("LOXONE_MQTT_PORT", 1883)
LOXONE_MQTT_USER: str | None = os.environ.get("LOXONE_MQTT_USER")
LOXONE_MQTT_PASS: str | None = os.environ.get("LOXONE_MQTT_PASS")
LOXONE_TOPIC: str = os.environ.get("LOXONE_TOPIC", "loxone")
LOXONE_MQTT_CONN_DELAY: int = _env_int("LOXONE_MQTT_CONN_DELAY", 10)

LOXONE_DEBUG: bool = _env_bool("LOXONE_DEBUG", "0")

# Logging Configuration
LOXONE_LOG_FORMAT: str = os.environ.get("LOXONE_LOG_FORMAT", "human")  # "json", "human", or "both"
LOXONE_LOG_JSON_FILE: str = os.environ.get("LOXONE_LOG_JSON_FILE", "/var/log/loxone_controller.json")
LOXONE_LOG_HUMAN_OUTPUT: str = os.environ.get("LOXONE_LOG_HUMAN_OUTPUT", "stdout")  # "stdout", "stderr", or file path

PERSISTENT_BASE_DIR: str = os.environ.get("LOXONE_PERSISTENT_BASE_DIR", "/data/loxone-controller")
LOXONE_CONFIG_FILE_PATH: str = f"{PERSISTENT_BASE_DIR}/config.yaml"
LOXONE_STATE_SNAPSHOT_PATH: str = f"{PERSISTENT_BASE_DIR}/states.yaml"

# Status server and metrics
STATUS_SRV_HOST: str = os.environ.get("LOXONE_STATUS_SRV_HOST", "0.0.0.0")
STATUS_SRV_PORT: int = _env_int("LOXONE_STATUS_SRV_PORT", 23780)
LOXONE_METRICS_ENABLED: bool = _env_bool("LOXONE_METRICS_ENABLED", "0")
LOXONE_METRICS_PORT: int = _env_int("LOXONE_METRICS_PORT", 9400)

SUPERVISOR_START_TASK_NAME = "ConnectionSupervisor_START"
MQTT_CLIENT_START_TASK_NAME = "MQTTClient_START"
STATUS_SRV_START_TASK_NAME = "StatusServer_START"
