"""Cleanup service: finds and removes analytics resources that lost their owner.

Two kinds of drift are handled:
1. Declared entities without runtime resources (a pipeline whose workload
   vanished, a serving instance without its transfer workload)
2. Runtime resources without declared entities (workloads, kube services,
   Kafka Streams internal topics and InfluxDB measurements left behind)

Detection never mutates anything. Synchronous deletes stop on the first
failure; the Kafka topic bulk delete runs in the background, continues past
per-topic failures and can be stopped by an operator.

CONCURRENCY: all collaborators are blocking clients and run in the default
executor. The bulk delete status, its running flag and its cancellation
handle are guarded by a single lock that is never held across a
collaborator call.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from collections.abc import Callable, Set as AbstractSet
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from .config import (
    DEFAULT_DELETE_INTERVAL_SECONDS,
    MAX_FORCE_DELETE_ATTEMPTS,
    CleanupMode,
)
from .errors import CleanupError, ConflictError, NotFoundError, UpstreamError
from .interfaces import (
    ClusterDriver,
    IdentityProvider,
    MeasurementStore,
    PipelineRegistry,
    ServingRegistry,
    TopicAdmin,
)
from .matching import (
    extract_pipeline_id,
    is_internal_analytics_topic,
    measurement_in_servings,
    pipe_in_workloads,
    pipeline_exists,
    serving_in_workloads,
    serving_value_fields,
    service_in_workloads,
    workload_in_pipes,
    workload_in_servings,
)
from .models import (
    Collection,
    DeleteStatus,
    InfluxDatabase,
    KubeService,
    Pipeline,
    ServingInstance,
    Workload,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Appended to the status errors when an operator stops a bulk delete
ABORTED = "aborted"


@dataclass
class CleanupReport:
    """Outcome of a single scheduled cleanup pass."""

    mode: CleanupMode = CleanupMode.OBSERVE
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    recreated_pipelines: list[str] = field(default_factory=list)
    orphans: dict[str, int] = field(default_factory=dict)
    deleted: dict[str, int] = field(default_factory=dict)
    topic_delete_status: DeleteStatus | None = None
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "duration_seconds": self.duration_seconds,
            "recreated_pipelines": list(self.recreated_pipelines),
            "orphans": dict(self.orphans),
            "deleted": dict(self.deleted),
            "topic_delete_status": (
                self.topic_delete_status.to_dict() if self.topic_delete_status else None
            ),
            "error": str(self.error) if self.error is not None else None,
        }


class CleanupService:
    """Orphan detection and removal over the injected collaborators.

    The serving registry and the measurement store are optional; the
    serving and measurement operations raise ``CleanupError`` when the
    collaborator they need was not configured.
    """

    def __init__(
        self,
        driver: ClusterDriver,
        pipelines: PipelineRegistry,
        identity: IdentityProvider,
        topic_admin: TopicAdmin,
        servings: ServingRegistry | None = None,
        measurements: MeasurementStore | None = None,
        delete_interval_seconds: float = DEFAULT_DELETE_INTERVAL_SECONDS,
    ) -> None:
        self._driver = driver
        self._pipelines = pipelines
        self._identity = identity
        self._topic_admin = topic_admin
        self._servings = servings
        self._measurements = measurements
        self._delete_interval = delete_interval_seconds

        self._lock = threading.Lock()
        self._delete_status = DeleteStatus()
        self._delete_running = False
        self._delete_cancel: asyncio.Event | None = None
        self._delete_task: asyncio.Task[None] | None = None

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking collaborator call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _serving_registry(self) -> ServingRegistry:
        if self._servings is None:
            raise CleanupError("serving registry is not configured")
        return self._servings

    def _measurement_store(self) -> MeasurementStore:
        if self._measurements is None:
            raise CleanupError("measurement store is not configured")
        return self._measurements

    # =========================================================================
    # Pipelines
    # =========================================================================

    async def get_orphaned_pipeline_services(
        self, user_id: str, access_token: str
    ) -> list[Pipeline]:
        """Pipelines without any workload.

        Pipelines with a local operator run partly outside the cluster and
        are never reported.
        """
        pipes = await self._call(self._pipelines.get_pipelines, user_id, access_token)
        workloads = await self._call(self._driver.get_workloads, Collection.PIPELINE)
        return [
            pipe
            for pipe in pipes
            if not pipe_in_workloads(pipe, workloads) and not pipe.has_local_operator
        ]

    async def delete_orphaned_pipeline_service(self, pipeline_id: str, access_token: str) -> None:
        await self._call(self._pipelines.delete_pipeline, pipeline_id, access_token)
        logger.info("Deleted orphaned pipeline", extra={"pipeline_id": pipeline_id})

    async def delete_orphaned_pipeline_services(
        self, user_id: str, access_token: str, keep: AbstractSet[str] = frozenset()
    ) -> list[Pipeline]:
        """Delete orphaned pipelines, except those whose id is in ``keep``."""
        pipes = [
            pipe
            for pipe in await self.get_orphaned_pipeline_services(user_id, access_token)
            if pipe.id not in keep
        ]
        for pipe in pipes:
            await self.delete_orphaned_pipeline_service(pipe.id, access_token)
        return pipes

    async def get_orphaned_analytics_workloads(
        self, user_id: str, access_token: str
    ) -> list[Workload]:
        pipes = await self._call(self._pipelines.get_pipelines, user_id, access_token)
        workloads = await self._call(self._driver.get_workloads, Collection.PIPELINE)
        return [workload for workload in workloads if not workload_in_pipes(workload, pipes)]

    async def delete_orphaned_analytics_workload(self, name: str) -> None:
        await self._call(self._driver.delete_workload, name, Collection.PIPELINE)

    async def delete_orphaned_analytics_workloads(
        self, user_id: str, access_token: str
    ) -> list[Workload]:
        workloads = await self.get_orphaned_analytics_workloads(user_id, access_token)
        for workload in workloads:
            await self.delete_orphaned_analytics_workload(workload.name)
        return workloads

    # =========================================================================
    # Kube services
    # =========================================================================

    async def get_orphaned_kube_services(self, collection: Collection) -> list[KubeService]:
        services = await self._call(self._driver.get_services, collection)
        workloads = await self._call(self._driver.get_workloads, collection)
        return [service for service in services if not service_in_workloads(service, workloads)]

    async def delete_orphaned_kube_service(self, collection: Collection, service_id: str) -> None:
        await self._call(self._driver.delete_service, service_id, collection)

    async def delete_orphaned_kube_services(self, collection: Collection) -> list[KubeService]:
        services = await self.get_orphaned_kube_services(collection)
        for service in services:
            await self.delete_orphaned_kube_service(collection, service.id)
        return services

    # =========================================================================
    # Serving instances
    # =========================================================================

    async def get_orphaned_serving_services(
        self, user_id: str, access_token: str
    ) -> list[ServingInstance]:
        servings = await self._call(
            self._serving_registry().get_serving_instances, user_id, access_token
        )
        workloads = await self._call(self._driver.get_workloads, Collection.SERVING)
        return [serving for serving in servings if not serving_in_workloads(serving, workloads)]

    async def delete_orphaned_serving_service(
        self, instance_id: str, user_id: str, access_token: str
    ) -> None:
        await self._call(
            self._serving_registry().delete_serving_instance, instance_id, user_id, access_token
        )
        logger.info("Deleted orphaned serving instance", extra={"instance_id": instance_id})

    async def delete_orphaned_serving_services(
        self, user_id: str, access_token: str
    ) -> list[ServingInstance]:
        servings = await self.get_orphaned_serving_services(user_id, access_token)
        for serving in servings:
            await self.delete_orphaned_serving_service(serving.id, user_id, access_token)
        return servings

    async def get_orphaned_serving_workloads(
        self, user_id: str, access_token: str
    ) -> list[Workload]:
        servings = await self._call(
            self._serving_registry().get_serving_instances, user_id, access_token
        )
        workloads = await self._call(self._driver.get_workloads, Collection.SERVING)
        return [
            workload for workload in workloads if not workload_in_servings(workload, servings)
        ]

    async def delete_orphaned_serving_workload(self, name: str) -> None:
        await self._call(self._driver.delete_workload, name, Collection.SERVING)

    async def delete_orphaned_serving_workloads(
        self, user_id: str, access_token: str
    ) -> list[Workload]:
        workloads = await self.get_orphaned_serving_workloads(user_id, access_token)
        for workload in workloads:
            await self.delete_orphaned_serving_workload(workload.name)
        return workloads

    # =========================================================================
    # InfluxDB measurements
    # =========================================================================

    async def get_orphaned_influx_measurements(
        self, user_id: str, access_token: str
    ) -> list[InfluxDatabase]:
        """Measurements no serving instance writes to, grouped by database.

        Databases without orphaned measurements are omitted.
        """
        store = self._measurement_store()
        servings = await self._call(
            self._serving_registry().get_serving_instances, user_id, access_token
        )
        databases = await self._call(store.get_databases)
        orphaned: list[InfluxDatabase] = []
        for database in databases:
            measurements = await self._call(store.get_measurements, database)
            unused = [m for m in measurements if not measurement_in_servings(m, servings)]
            if unused:
                orphaned.append(InfluxDatabase(database_id=database, measurements=unused))
        return orphaned

    async def force_delete_measurement(self, measurement: str, database: str) -> None:
        """Drop a measurement and retry until it no longer shows up.

        InfluxDB may still list a dropped measurement for a while; the drop
        is repeated up to ``MAX_FORCE_DELETE_ATTEMPTS`` times.
        """
        store = self._measurement_store()
        for attempt in range(1, MAX_FORCE_DELETE_ATTEMPTS + 1):
            await self._call(store.drop_measurement, measurement, database)
            remaining = await self._call(store.get_measurements, database)
            if measurement not in remaining:
                return
            logger.warning(
                "Measurement still present after drop, retrying",
                extra={"measurement": measurement, "database": database, "attempt": attempt},
            )
        raise UpstreamError(
            f"influxdb: measurement {measurement} in {database} still present "
            f"after {MAX_FORCE_DELETE_ATTEMPTS} drops"
        )

    async def delete_orphaned_influx_measurement(self, database: str, measurement: str) -> None:
        await self.force_delete_measurement(measurement, database)

    async def delete_orphaned_influx_measurements(
        self, user_id: str, access_token: str
    ) -> list[InfluxDatabase]:
        databases = await self.get_orphaned_influx_measurements(user_id, access_token)
        for database in databases:
            for measurement in database.measurements:
                await self.force_delete_measurement(measurement, database.database_id)
        return databases

    # =========================================================================
    # Kafka topics
    # =========================================================================

    async def get_orphaned_kafka_topics(self) -> list[str]:
        """Internal analytics topics whose pipeline has no running workload."""
        topics = await self._call(self._topic_admin.get_topics)
        envs = await self._call(self._driver.get_workload_envs, Collection.PIPELINE)
        return [
            topic
            for topic in topics
            if is_internal_analytics_topic(topic) and not pipeline_exists(topic, envs)
        ]

    async def delete_orphaned_kafka_topic(self, name: str) -> None:
        await self._call(self._topic_admin.delete_topic, name)

    async def delete_orphaned_kafka_topics(
        self, keep_pipelines: AbstractSet[str] = frozenset()
    ) -> DeleteStatus:
        """Start deleting every orphaned topic in the background.

        Topics of pipelines in ``keep_pipelines`` are left alone. The run
        can be stopped as soon as this is called, including while the
        orphaned topics are still being listed.

        Returns the status of the started run immediately.

        Raises:
            ConflictError: If a bulk delete is already running.
        """
        cancel = asyncio.Event()
        with self._lock:
            if self._delete_running:
                raise ConflictError("deletion of orphaned kafka topics is already running")
            self._delete_running = True
            self._delete_cancel = cancel

        try:
            topics = [
                topic
                for topic in await self.get_orphaned_kafka_topics()
                if extract_pipeline_id(topic) not in keep_pipelines
            ]
        except BaseException:
            with self._lock:
                self._delete_running = False
                self._delete_cancel = None
            raise

        with self._lock:
            self._delete_status = DeleteStatus(
                total=len(topics), remaining=len(topics), running=True
            )
            status = self._delete_status.snapshot()

        logger.info("Starting bulk delete of orphaned kafka topics", extra={"total": len(topics)})
        self._delete_task = asyncio.create_task(self._delete_topics(topics, cancel))
        return status

    async def _delete_topics(self, topics: list[str], cancel: asyncio.Event) -> None:
        total = len(topics)
        # A stop requested while the topics were listed also ends an empty run
        aborted = cancel.is_set() and total == 0
        try:
            for index, topic in enumerate(topics):
                if cancel.is_set():
                    aborted = True
                    break

                error: str | None = None
                try:
                    await self._call(self._topic_admin.delete_topic, topic)
                except NotFoundError:
                    logger.info("Kafka topic already deleted", extra={"topic": topic})
                except Exception as e:
                    error = f"deleting kafka topic {topic} failed: {e}"
                    logger.error(
                        "Failed to delete kafka topic", extra={"topic": topic, "error": str(e)}
                    )

                with self._lock:
                    self._delete_status.remaining = total - (index + 1)
                    if error is not None:
                        self._delete_status.errors.append(error)

                if index + 1 < total:
                    await self._throttle(cancel)
        finally:
            with self._lock:
                self._delete_status.running = False
                if aborted:
                    self._delete_status.errors.append(ABORTED)
                self._delete_running = False
                self._delete_cancel = None
                status = self._delete_status.snapshot()

        if aborted:
            logger.warning(
                "Bulk delete of kafka topics aborted",
                extra={"total": status.total, "remaining": status.remaining},
            )
        else:
            logger.info(
                "Bulk delete of kafka topics finished",
                extra={"total": status.total, "errors": len(status.errors)},
            )

    async def _throttle(self, cancel: asyncio.Event) -> None:
        """Pause between deletions; a stop request ends the pause early."""
        if self._delete_interval <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self._delete_interval)
        except TimeoutError:
            pass

    def get_delete_orphaned_kafka_topics_status(self) -> DeleteStatus:
        with self._lock:
            return self._delete_status.snapshot()

    def stop_delete_orphaned_kafka_topics(self) -> None:
        """Request the running bulk delete to stop before its next topic.

        Raises:
            ConflictError: If no bulk delete is running.
        """
        with self._lock:
            if not self._delete_running or self._delete_cancel is None:
                raise ConflictError("no deletion of orphaned kafka topics is running")
            self._delete_cancel.set()
        logger.info("Stop of kafka topic bulk delete requested")

    async def wait_for_delete(self) -> DeleteStatus:
        """Wait until the current bulk delete, if any, has finished."""
        task = self._delete_task
        if task is not None:
            await task
        return self.get_delete_orphaned_kafka_topics_status()

    def shutdown(self) -> None:
        """Cancel a running bulk delete, if any."""
        with self._lock:
            if self._delete_cancel is not None:
                self._delete_cancel.set()

    # =========================================================================
    # Recreation
    # =========================================================================

    async def recreate_pipelines(
        self, pipelines: list[Pipeline], workloads: list[Workload]
    ) -> list[str]:
        """Resubmit every pipeline that has no workload under its owner's identity.

        Returns the ids of the pipelines resubmitted successfully.

        Raises:
            CleanupError: If an impersonation token cannot be obtained; the
                remaining pipelines are not attempted.
        """
        recreated: list[str] = []
        for pipe in pipelines:
            if pipe_in_workloads(pipe, workloads):
                continue
            logger.info(
                "Recreating pipeline",
                extra={
                    "pipeline_id": pipe.id,
                    "pipeline_name": pipe.name,
                    "user_id": pipe.user_id,
                    "username": await self._owner_name(pipe.user_id),
                },
            )
            request = pipe.to_request()
            user_token = await self._call(self._identity.get_impersonate_token, pipe.user_id)
            try:
                await self._call(self._pipelines.create_pipeline, request, pipe.user_id, user_token)
            except CleanupError as e:
                logger.error(
                    "Failed to recreate pipeline",
                    extra={"pipeline_id": pipe.id, "user_id": pipe.user_id, "error": str(e)},
                )
                continue
            recreated.append(pipe.id)
        return recreated

    async def recreate_missing_pipelines(self, user_id: str, access_token: str) -> list[str]:
        """Fetch pipelines and pipeline workloads, then recreate what is missing."""
        pipes = await self._call(self._pipelines.get_pipelines, user_id, access_token)
        workloads = await self._call(self._driver.get_workloads, Collection.PIPELINE)
        return await self.recreate_pipelines(pipes, workloads)

    async def recreate_missing_serving_instances(
        self, user_id: str, access_token: str
    ) -> list[str]:
        servings = await self._call(
            self._serving_registry().get_serving_instances, user_id, access_token
        )
        workloads = await self._call(self._driver.get_workloads, Collection.SERVING)
        return await self.recreate_serving_instances(servings, workloads)

    async def _owner_name(self, user_id: str) -> str | None:
        """Username of a pipeline owner, for logging only."""
        try:
            user = await self._call(self._identity.get_user_by_id, user_id)
        except CleanupError as e:
            logger.warning("Owner lookup failed", extra={"user_id": user_id, "error": str(e)})
            return None
        username = user.get("username")
        return str(username) if username is not None else None

    async def recreate_serving_instances(
        self, servings: list[ServingInstance], workloads: list[Workload]
    ) -> list[str]:
        """Recreate the transfer workload of every serving instance missing one.

        Failures are logged per instance and skipped. Returns the ids of the
        instances recreated.
        """
        recreated: list[str] = []
        for serving in servings:
            if serving_in_workloads(serving, workloads):
                continue
            data_fields, tag_fields = serving_value_fields(serving.values)
            try:
                service_id = await self._call(
                    self._driver.create_serving_instance, serving, data_fields, tag_fields
                )
            except CleanupError as e:
                logger.error(
                    "Failed to recreate serving instance",
                    extra={"instance_id": serving.id, "error": str(e)},
                )
                continue
            logger.info(
                "Recreated serving instance",
                extra={"instance_id": serving.id, "service_id": service_id},
            )
            recreated.append(serving.id)
        return recreated

    # =========================================================================
    # Scheduled pass
    # =========================================================================

    async def run_cleanup(
        self, recreate_pipes: bool = False, mode: CleanupMode = CleanupMode.OBSERVE
    ) -> CleanupReport:
        """Run one cleanup pass as the service account.

        In observe mode orphans are only counted and logged; in enforce mode
        they are deleted and the Kafka topic bulk delete is run to the end.
        Errors are captured in the report rather than raised.
        Pipelines recreated by this pass, and their internal topics, are
        never counted or deleted as orphans in the same pass.
        """
        report = CleanupReport(mode=mode)
        try:
            user_info = await self._call(self._identity.get_user_info)
            token = await self._call(self._identity.get_access_token)
            user_id = user_info.sub

            if recreate_pipes:
                report.recreated_pipelines = await self.recreate_missing_pipelines(user_id, token)

            # Resubmitted pipelines have no workload until the engine deploys them
            recreated = frozenset(report.recreated_pipelines)
            report.orphans = await self._count_orphans(user_id, token, recreated)
            logger.info("Orphaned resources", extra={"mode": mode.value, **report.orphans})

            if mode == CleanupMode.ENFORCE:
                report.deleted = await self._delete_orphans(user_id, token, recreated)
                await self.delete_orphaned_kafka_topics(recreated)
                report.topic_delete_status = await self.wait_for_delete()
        except Exception as e:
            report.error = e
        finally:
            report.end_time = datetime.now(UTC)
        self._log_report(report)
        return report

    async def _count_orphans(
        self, user_id: str, token: str, keep: AbstractSet[str]
    ) -> dict[str, int]:
        pipes = await self.get_orphaned_pipeline_services(user_id, token)
        topics = await self.get_orphaned_kafka_topics()
        counts = {
            "pipelines": len([pipe for pipe in pipes if pipe.id not in keep]),
            "analytics_workloads": len(await self.get_orphaned_analytics_workloads(user_id, token)),
            "pipeline_kube_services": len(
                await self.get_orphaned_kube_services(Collection.PIPELINE)
            ),
            "kafka_topics": len(
                [topic for topic in topics if extract_pipeline_id(topic) not in keep]
            ),
        }
        if self._servings is not None:
            counts["servings"] = len(await self.get_orphaned_serving_services(user_id, token))
            counts["serving_workloads"] = len(
                await self.get_orphaned_serving_workloads(user_id, token)
            )
            counts["serving_kube_services"] = len(
                await self.get_orphaned_kube_services(Collection.SERVING)
            )
            if self._measurements is not None:
                counts["influx_measurements"] = sum(
                    len(db.measurements)
                    for db in await self.get_orphaned_influx_measurements(user_id, token)
                )
        return counts

    async def _delete_orphans(
        self, user_id: str, token: str, keep: AbstractSet[str]
    ) -> dict[str, int]:
        deleted = {
            "pipelines": len(await self.delete_orphaned_pipeline_services(user_id, token, keep)),
            "analytics_workloads": len(
                await self.delete_orphaned_analytics_workloads(user_id, token)
            ),
            "pipeline_kube_services": len(
                await self.delete_orphaned_kube_services(Collection.PIPELINE)
            ),
        }
        if self._servings is not None:
            deleted["servings"] = len(await self.delete_orphaned_serving_services(user_id, token))
            deleted["serving_workloads"] = len(
                await self.delete_orphaned_serving_workloads(user_id, token)
            )
            deleted["serving_kube_services"] = len(
                await self.delete_orphaned_kube_services(Collection.SERVING)
            )
            if self._measurements is not None:
                deleted["influx_measurements"] = sum(
                    len(db.measurements)
                    for db in await self.delete_orphaned_influx_measurements(user_id, token)
                )
        return deleted

    def _log_report(self, report: CleanupReport) -> None:
        extra: dict[str, Any] = {
            "mode": report.mode.value,
            "duration_seconds": report.duration_seconds,
            "recreated_pipelines": len(report.recreated_pipelines),
            "deleted": sum(report.deleted.values()),
        }
        if report.error is not None:
            extra["error"] = str(report.error)
            logger.error("Cleanup pass failed", extra=extra)
        else:
            logger.info("Cleanup pass finished", extra=extra)
