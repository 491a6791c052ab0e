"""Collaborator contracts consumed by the cleanup service.

Every collaborator is a blocking client; the service runs calls in the
default executor so the event loop stays responsive.
"""

from __future__ import annotations

from typing import Protocol

from .models import (
    Collection,
    KubeService,
    Pipeline,
    PipelineRequest,
    ServingInstance,
    UserInfo,
    Workload,
)


class ClusterDriver(Protocol):
    """Orchestrator abstraction, one implementation per Rancher generation."""

    def get_workloads(self, collection: Collection) -> list[Workload]: ...

    def get_services(self, collection: Collection) -> list[KubeService]: ...

    def get_workload_envs(self, collection: Collection) -> list[dict[str, str]]: ...

    def delete_workload(self, name: str, collection: Collection) -> None: ...

    def delete_service(self, service_id: str, collection: Collection) -> None: ...

    def create_serving_instance(
        self, instance: ServingInstance, data_fields: str, tag_fields: str
    ) -> str: ...


class PipelineRegistry(Protocol):
    def get_pipelines(self, user_id: str, access_token: str) -> list[Pipeline]: ...

    def delete_pipeline(self, pipeline_id: str, access_token: str) -> None: ...

    def create_pipeline(
        self, request: PipelineRequest, user_id: str, user_token: str
    ) -> None: ...


class ServingRegistry(Protocol):
    def get_serving_instances(self, user_id: str, access_token: str) -> list[ServingInstance]: ...

    def delete_serving_instance(
        self, instance_id: str, user_id: str, access_token: str
    ) -> None: ...


class IdentityProvider(Protocol):
    def login(self) -> None: ...

    def logout(self) -> None: ...

    def get_access_token(self) -> str: ...

    def get_user_info(self) -> UserInfo: ...

    def get_user_by_id(self, user_id: str) -> dict[str, object]: ...

    def get_impersonate_token(self, user_id: str) -> str: ...


class TopicAdmin(Protocol):
    def get_topics(self) -> list[str]: ...

    def delete_topic(self, name: str) -> None:
        """Delete a topic; raises NotFoundError if it does not exist."""
        ...

    def close(self) -> None: ...


class MeasurementStore(Protocol):
    def get_databases(self) -> list[str]: ...

    def get_measurements(self, database: str) -> list[str]: ...

    def drop_measurement(self, measurement: str, database: str) -> None: ...
