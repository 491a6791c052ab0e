"""Configuration management with validation.

Configuration is read from environment variables, optionally layered on top
of a YAML file named by CONFIG_FILE. Invalid configurations raise
ConfigurationError at load time rather than failing on the first request.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml


class DriverType(str, Enum):
    """Supported cluster orchestrator generations."""

    RANCHER = "rancher"
    RANCHER2 = "rancher2"


class RunMode(str, Enum):
    """How the process runs."""

    WEB = "web"
    CRON = "cron"
    ONCE = "once"


class CleanupMode(str, Enum):
    """What a scheduled cleanup run does with the orphans it finds.

    - OBSERVE: detect and log orphan counts only
    - ENFORCE: detect and delete
    """

    OBSERVE = "observe"
    ENFORCE = "enforce"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_SERVER_PORT = 8080
DEFAULT_KAFKA_BOOTSTRAP = "localhost:9092"
DEFAULT_PIPELINE_NAMESPACE_ID = "analytics-pipelines"
DEFAULT_TRANSFER_IMAGE = "fgseitsrancher.wifa.intern.uni-leipzig.de:5000/kafka-influx:unstable"

DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600
MIN_CLEANUP_INTERVAL_SECONDS = 60
MAX_CLEANUP_INTERVAL_SECONDS = 86400

# Throttle between two Kafka topic deletions in a bulk run
DEFAULT_DELETE_INTERVAL_SECONDS = 1.0

# Collaborator timeouts
KAFKA_ADMIN_TIMEOUT_SECONDS = 25
HTTP_TIMEOUT_SECONDS = 10

# Drop-then-list attempts before a measurement delete is declared failed
MAX_FORCE_DELETE_ATTEMPTS = 10

MAX_CONFIG_FILE_SIZE_BYTES = 1024 * 1024


@dataclass(frozen=True)
class KeycloakConfig:
    """Service account used to talk to the identity provider."""

    url: str = "http://localhost"
    realm: str = ""
    client_id: str = "local"
    client_secret: str = "local"
    user: str = ""
    password: str = ""


@dataclass(frozen=True)
class RancherConfig:
    """Rancher v1 (stacks) connection settings."""

    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    pipelines_stack_id: str = ""
    serving_stack_id: str = ""


@dataclass(frozen=True)
class Rancher2Config:
    """Rancher v2 (projects and namespaces) connection settings."""

    endpoint: str = ""
    access_key: str = ""
    secret_key: str = ""
    pipeline_project_id: str = ""
    pipeline_namespace_id: str = DEFAULT_PIPELINE_NAMESPACE_ID
    serving_project_id: str = ""
    serving_namespace_id: str = ""


@dataclass(frozen=True)
class InfluxConfig:
    """InfluxDB 1.x connection settings for serving measurements."""

    proto: str = "http"
    host: str = ""
    port: int = 8086
    username: str = "root"
    password: str = ""

    @property
    def url(self) -> str:
        return f"{self.proto}://{self.host}:{self.port}"


@dataclass(frozen=True)
class Config:
    """Service configuration.

    All fields are validated at construction time.
    """

    pipeline_api_endpoint: str
    flow_engine_api_endpoint: str
    serving_api_endpoint: str = ""
    kafka_bootstrap: str = DEFAULT_KAFKA_BOOTSTRAP

    mode: RunMode = RunMode.WEB
    driver: DriverType = DriverType.RANCHER2
    server_port: int = DEFAULT_SERVER_PORT
    url_prefix: str = ""
    debug: bool = False
    log_level: str = "INFO"

    keycloak: KeycloakConfig = field(default_factory=KeycloakConfig)
    rancher: RancherConfig = field(default_factory=RancherConfig)
    rancher2: Rancher2Config = field(default_factory=Rancher2Config)
    influx: InfluxConfig = field(default_factory=InfluxConfig)

    transfer_image: str = DEFAULT_TRANSFER_IMAGE

    # Scheduled runs
    cleanup_interval_seconds: int = DEFAULT_CLEANUP_INTERVAL_SECONDS
    cleanup_mode: CleanupMode = CleanupMode.OBSERVE
    recreate_pipelines: bool = False

    delete_interval_seconds: float = DEFAULT_DELETE_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.pipeline_api_endpoint:
            errors.append("PIPELINE_API_ENDPOINT is required")
        if not self.flow_engine_api_endpoint:
            errors.append("FLOW_ENGINE_API_ENDPOINT is required")
        if not self.kafka_bootstrap:
            errors.append("KAFKA_BOOTSTRAP is required")

        match self.driver:
            case DriverType.RANCHER:
                if not self.rancher.endpoint:
                    errors.append("RANCHER_ENDPOINT is required when DRIVER is rancher")
            case DriverType.RANCHER2:
                if not self.rancher2.endpoint:
                    errors.append("RANCHER2_ENDPOINT is required when DRIVER is rancher2")

        if not (1 <= self.server_port <= 65535):
            errors.append(f"SERVER_PORT must be between 1 and 65535: {self.server_port}")

        if not (
            MIN_CLEANUP_INTERVAL_SECONDS
            <= self.cleanup_interval_seconds
            <= MAX_CLEANUP_INTERVAL_SECONDS
        ):
            errors.append(
                f"CLEANUP_INTERVAL must be between {MIN_CLEANUP_INTERVAL_SECONDS} "
                f"and {MAX_CLEANUP_INTERVAL_SECONDS} seconds"
            )

        if self.delete_interval_seconds < 0:
            errors.append("DELETE_INTERVAL must not be negative")

        if self.url_prefix and not self.url_prefix.startswith("/"):
            errors.append(f"URL_PREFIX must start with '/': {self.url_prefix}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        If CONFIG_FILE points to a YAML file, its keys (the lower-cased
        environment variable names, e.g. ``kafka_bootstrap``) provide
        defaults; environment variables always win.

        Environment Variables:
            MODE: web, cron or once (default: web)
            DRIVER: rancher or rancher2 (default: rancher2)
            SERVER_PORT, URL_PREFIX, DEBUG, LOG_LEVEL
            PIPELINE_API_ENDPOINT, FLOW_ENGINE_API_ENDPOINT, SERVING_API_ENDPOINT
            KAFKA_BOOTSTRAP
            KEYCLOAK_URL, KEYCLOAK_REALM, KEYCLOAK_CLIENT_ID,
            KEYCLOAK_CLIENT_SECRET, KEYCLOAK_USER, KEYCLOAK_PASSWORD
            RANCHER_ENDPOINT, RANCHER_ACCESS_KEY, RANCHER_SECRET_KEY,
            RANCHER_PIPELINES_STACK_ID, RANCHER_SERVING_STACK_ID
            RANCHER2_ENDPOINT, RANCHER2_ACCESS_KEY, RANCHER2_SECRET_KEY,
            RANCHER2_PIPELINE_PROJECT_ID, RANCHER2_PIPELINE_NAMESPACE_ID,
            RANCHER2_SERVING_PROJECT_ID, RANCHER2_SERVING_NAMESPACE_ID
            INFLUX_DB_PROTO, INFLUX_DB_HOST, INFLUX_DB_PORT,
            INFLUX_DB_USERNAME, INFLUX_DB_PASSWORD
            TRANSFER_IMAGE
            CLEANUP_INTERVAL: Seconds between scheduled runs (default: 3600)
            CLEANUP_MODE: observe or enforce (default: observe)
            RECREATE_PIPELINES: Resubmit pipelines missing a workload (default: false)
            DELETE_INTERVAL: Seconds between two topic deletions (default: 1)
        """
        file_values = _load_config_file(os.environ.get("CONFIG_FILE"))

        def get_str(key: str, default: str = "") -> str:
            value = os.environ.get(key)
            if value:
                return value
            file_value = file_values.get(key.lower())
            if file_value is None:
                return default
            return str(file_value)

        def get_int(key: str, default: int) -> int:
            value = get_str(key)
            if not value:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = get_str(key)
            if not value:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = get_str(key).lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_enum(key: str, enum_cls: type[Enum], default: Any) -> Any:
            value = get_str(key)
            if not value:
                return default
            try:
                return enum_cls(value)
            except ValueError as e:
                valid = [m.value for m in enum_cls]
                raise ConfigurationError(f"{key} must be one of {valid}: {value}") from e

        return cls(
            pipeline_api_endpoint=get_str("PIPELINE_API_ENDPOINT"),
            flow_engine_api_endpoint=get_str("FLOW_ENGINE_API_ENDPOINT"),
            serving_api_endpoint=get_str("SERVING_API_ENDPOINT"),
            kafka_bootstrap=get_str("KAFKA_BOOTSTRAP", DEFAULT_KAFKA_BOOTSTRAP),
            mode=get_enum("MODE", RunMode, RunMode.WEB),
            driver=get_enum("DRIVER", DriverType, DriverType.RANCHER2),
            server_port=get_int("SERVER_PORT", DEFAULT_SERVER_PORT),
            url_prefix=get_str("URL_PREFIX"),
            debug=get_bool("DEBUG", False),
            log_level=get_str("LOG_LEVEL", "INFO").upper(),
            keycloak=KeycloakConfig(
                url=get_str("KEYCLOAK_URL", "http://localhost"),
                realm=get_str("KEYCLOAK_REALM"),
                client_id=get_str("KEYCLOAK_CLIENT_ID", "local"),
                client_secret=get_str("KEYCLOAK_CLIENT_SECRET", "local"),
                user=get_str("KEYCLOAK_USER"),
                password=get_str("KEYCLOAK_PASSWORD"),
            ),
            rancher=RancherConfig(
                endpoint=get_str("RANCHER_ENDPOINT"),
                access_key=get_str("RANCHER_ACCESS_KEY"),
                secret_key=get_str("RANCHER_SECRET_KEY"),
                pipelines_stack_id=get_str("RANCHER_PIPELINES_STACK_ID"),
                serving_stack_id=get_str("RANCHER_SERVING_STACK_ID"),
            ),
            rancher2=Rancher2Config(
                endpoint=get_str("RANCHER2_ENDPOINT"),
                access_key=get_str("RANCHER2_ACCESS_KEY"),
                secret_key=get_str("RANCHER2_SECRET_KEY"),
                pipeline_project_id=get_str("RANCHER2_PIPELINE_PROJECT_ID"),
                pipeline_namespace_id=get_str(
                    "RANCHER2_PIPELINE_NAMESPACE_ID", DEFAULT_PIPELINE_NAMESPACE_ID
                ),
                serving_project_id=get_str("RANCHER2_SERVING_PROJECT_ID"),
                serving_namespace_id=get_str("RANCHER2_SERVING_NAMESPACE_ID"),
            ),
            influx=InfluxConfig(
                proto=get_str("INFLUX_DB_PROTO", "http"),
                host=get_str("INFLUX_DB_HOST"),
                port=get_int("INFLUX_DB_PORT", 8086),
                username=get_str("INFLUX_DB_USERNAME", "root"),
                password=get_str("INFLUX_DB_PASSWORD"),
            ),
            transfer_image=get_str("TRANSFER_IMAGE", DEFAULT_TRANSFER_IMAGE),
            cleanup_interval_seconds=get_int("CLEANUP_INTERVAL", DEFAULT_CLEANUP_INTERVAL_SECONDS),
            cleanup_mode=get_enum("CLEANUP_MODE", CleanupMode, CleanupMode.OBSERVE),
            recreate_pipelines=get_bool("RECREATE_PIPELINES", False),
            delete_interval_seconds=get_float("DELETE_INTERVAL", DEFAULT_DELETE_INTERVAL_SECONDS),
        )


def _load_config_file(path: str | None) -> dict[str, Any]:
    """Read the optional YAML config file into a flat dict."""
    if not path:
        return {}

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"CONFIG_FILE does not exist: {config_path}")

    if config_path.stat().st_size > MAX_CONFIG_FILE_SIZE_BYTES:
        raise ConfigurationError(
            f"CONFIG_FILE exceeds maximum size of {MAX_CONFIG_FILE_SIZE_BYTES} bytes"
        )

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"CONFIG_FILE is not valid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("CONFIG_FILE must contain a mapping at the top level")

    return {str(k).lower(): v for k, v in data.items()}
