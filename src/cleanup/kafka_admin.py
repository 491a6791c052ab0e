"""Kafka topic administration over kafka-python's admin client."""

from __future__ import annotations

import logging
import threading

from kafka import KafkaAdminClient
from kafka.errors import KafkaError, UnknownTopicOrPartitionError

from .config import KAFKA_ADMIN_TIMEOUT_SECONDS
from .errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)


class KafkaTopicAdmin:
    """Lists and deletes topics.

    The underlying admin client is created on first use so that the
    service can start while the broker is still unreachable.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        admin_client: KafkaAdminClient | None = None,
        timeout_seconds: int = KAFKA_ADMIN_TIMEOUT_SECONDS,
    ) -> None:
        self._bootstrap_servers = bootstrap_servers
        self._client = admin_client
        self._timeout_ms = timeout_seconds * 1000
        self._lock = threading.Lock()

    def _admin(self) -> KafkaAdminClient:
        with self._lock:
            if self._client is None:
                try:
                    self._client = KafkaAdminClient(
                        bootstrap_servers=self._bootstrap_servers.split(","),
                        client_id="analytics-cleanup",
                        request_timeout_ms=self._timeout_ms,
                    )
                except KafkaError as e:
                    raise UpstreamError(
                        f"kafka: cannot connect to {self._bootstrap_servers}: {e}"
                    ) from e
            return self._client

    def get_topics(self) -> list[str]:
        try:
            return list(self._admin().list_topics())
        except KafkaError as e:
            raise UpstreamError(f"kafka: listing topics failed: {e}") from e

    def delete_topic(self, name: str) -> None:
        try:
            self._admin().delete_topics([name], timeout_ms=self._timeout_ms)
        except UnknownTopicOrPartitionError as e:
            raise NotFoundError(f"kafka: topic {name} does not exist") from e
        except KafkaError as e:
            raise UpstreamError(f"kafka: deleting topic {name} failed: {e}") from e
        logger.info("Deleted kafka topic", extra={"topic": name})

    def close(self) -> None:
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()
