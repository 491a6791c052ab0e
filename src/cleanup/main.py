"""Main entry point for the analytics cleanup service.

Three run modes are supported:
- web: serve the admin HTTP API
- cron: run a cleanup pass every CLEANUP_INTERVAL seconds until stopped
- once: run a single cleanup pass and exit

The service account logs in to Keycloak at startup and out on exit.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

import uvicorn

from .api import create_app
from .config import Config, ConfigurationError, RunMode
from .drivers import create_driver
from .errors import CleanupError
from .identity import KeycloakClient
from .influx import InfluxClient
from .kafka_admin import KafkaTopicAdmin
from .registry import PipelineRegistryClient, ServingRegistryClient
from .service import CleanupService

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_KEYS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        "color_message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Reduce noise from the client libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("kafka").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_service(config: Config) -> tuple[CleanupService, KeycloakClient]:
    """Wire the collaborator clients selected by the configuration.

    The serving registry is only used when SERVING_API_ENDPOINT is set and
    the measurement store only when INFLUX_DB_HOST is set.
    """
    identity = KeycloakClient(config.keycloak)
    servings = (
        ServingRegistryClient(config.serving_api_endpoint) if config.serving_api_endpoint else None
    )
    measurements = InfluxClient(config.influx) if config.influx.host else None
    service = CleanupService(
        driver=create_driver(config),
        pipelines=PipelineRegistryClient(
            config.pipeline_api_endpoint, config.flow_engine_api_endpoint
        ),
        identity=identity,
        topic_admin=KafkaTopicAdmin(config.kafka_bootstrap),
        servings=servings,
        measurements=measurements,
        delete_interval_seconds=config.delete_interval_seconds,
    )
    return service, identity


async def run_scheduled(
    service: CleanupService, config: Config, shutdown_event: asyncio.Event
) -> None:
    """Run cleanup passes on the configured interval until shutdown."""
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting scheduled cleanup",
        extra={
            "interval_seconds": config.cleanup_interval_seconds,
            "cleanup_mode": config.cleanup_mode.value,
            "recreate_pipelines": config.recreate_pipelines,
        },
    )
    while not shutdown_event.is_set():
        await service.run_cleanup(config.recreate_pipelines, config.cleanup_mode)
        try:
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=config.cleanup_interval_seconds,
            )
        except TimeoutError:
            # Normal timeout, continue to next pass
            pass
    logger.info("Scheduled cleanup stopped")


async def serve(service: CleanupService, config: Config) -> None:
    app = create_app(service, config.url_prefix)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host="0.0.0.0",
            port=config.server_port,
            log_config=None,
            access_log=config.debug,
        )
    )
    await server.serve()


async def main() -> int:
    """Run the cleanup service.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging("DEBUG" if config.debug else config.log_level)
    logger.info(
        "Starting analytics cleanup",
        extra={
            "mode": config.mode.value,
            "driver": config.driver.value,
            "cleanup_mode": config.cleanup_mode.value,
        },
    )

    try:
        service, identity = build_service(config)
        await asyncio.get_running_loop().run_in_executor(None, identity.login)
    except CleanupError as e:
        logger.error(
            "Failed to initialize cleanup service",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    exit_code = 0
    try:
        match config.mode:
            case RunMode.WEB:
                # uvicorn installs its own SIGTERM/SIGINT handling
                await serve(service, config)
            case RunMode.CRON:
                shutdown_event = asyncio.Event()
                loop = asyncio.get_running_loop()

                def signal_handler(sig: signal.Signals) -> None:
                    logger.info("Received signal", extra={"signal": sig.name})
                    shutdown_event.set()
                    service.shutdown()

                for sig in (signal.SIGTERM, signal.SIGINT):
                    loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

                await run_scheduled(service, config, shutdown_event)
            case RunMode.ONCE:
                report = await service.run_cleanup(config.recreate_pipelines, config.cleanup_mode)
                exit_code = 0 if report.success else 1
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        exit_code = 1
    finally:
        service.shutdown()
        try:
            identity.logout()
        except CleanupError as e:
            logger.warning("Keycloak logout failed", extra={"error": str(e)})

    logger.info("Analytics cleanup stopped", extra={"exit_code": exit_code})
    return exit_code


def run() -> None:
    """Entry point for the service."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
