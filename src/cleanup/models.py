"""Pydantic models for the entities exchanged with the collaborators.

These models provide:
1. Type-safe parsing of registry, engine and orchestrator responses
2. Validation at the boundary
3. Conversion of stored pipelines back into flow-engine submission requests
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

logger = logging.getLogger(__name__)

# Default window time of the flow engine when the stored pipeline has none
DEFAULT_WINDOW_TIME = 30

LOCAL_DEPLOYMENT_TYPE = "local"

FILTER_TYPE_RENAMES: dict[str, str] = {
    "DeviceId": "deviceId",
    "OperatorId": "operatorId",
}


class Collection(str, Enum):
    """Runtime resource collections the cluster driver can be scoped to."""

    PIPELINE = "pipeline"
    SERVING = "serving"


class _Model(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}


# =============================================================================
# Pipeline registry
# =============================================================================


class Mapping(_Model):
    dest: str = ""
    source: str = ""


class InputTopic(_Model):
    name: str = ""
    filter_type: str = Field("", alias="filterType")
    filter_value: str = Field("", alias="filterValue")
    mappings: list[Mapping] = Field(default_factory=list)


class InputSelection(_Model):
    input_name: str | None = Field(None, alias="inputName")
    aspect_id: str | None = Field(None, alias="aspectId")
    function_id: str | None = Field(None, alias="functionId")
    characteristic_ids: list[str] | None = Field(None, alias="characteristicIds")
    selectable_id: str | None = Field(None, alias="selectableId")


class Operator(_Model):
    """A single processing step of a pipeline."""

    id: str = ""
    name: str = ""
    application_id: str | None = Field(None, alias="applicationId")
    image_id: str = Field("", alias="imageId")
    deployment_type: str = Field("", alias="deploymentType")
    operator_id: str = Field("", alias="operatorId")
    config: dict[str, str] = Field(default_factory=dict)
    output_topic: str = Field("", alias="outputTopic")
    input_topics: list[InputTopic] = Field(default_factory=list, alias="inputTopics")
    input_selections: list[InputSelection] = Field(default_factory=list, alias="inputSelections")
    persist_data: dict[str, bool] | None = Field(None, alias="persistData")

    @property
    def is_local(self) -> bool:
        """Local operators run outside the cluster and never get a workload."""
        return self.deployment_type == LOCAL_DEPLOYMENT_TYPE


class Pipeline(_Model):
    """A pipeline as stored in the pipeline registry."""

    id: str
    name: str = ""
    description: str = ""
    flow_id: str = Field("", alias="flowId")
    image: str = ""
    window_time: int | None = Field(None, alias="windowTime")
    consume_all_messages: bool = Field(False, alias="consumeAllMessages")
    metrics: bool = False
    created_at: datetime | None = Field(None, alias="createdAt")
    updated_at: datetime | None = Field(None, alias="updatedAt")
    user_id: str = Field(
        "",
        validation_alias=AliasChoices("userId", "UserId", "user_id"),
        serialization_alias="userId",
    )
    operators: list[Operator] = Field(default_factory=list)

    @property
    def has_local_operator(self) -> bool:
        return any(operator.is_local for operator in self.operators)

    def to_request(self) -> PipelineRequest:
        """Rebuild the flow-engine submission request for this pipeline.

        Legacy filter types are normalised on the way: ``DeviceId`` and
        ``OperatorId`` become ``deviceId``/``operatorId``, and an
        ``operatorId`` filter without a pipeline suffix gets
        ``:<pipeline id>`` appended.
        """
        nodes: list[PipelineNode] = []
        for operator in self.operators:
            inputs: list[NodeInput] = []
            for input_topic in operator.input_topics:
                filter_type = FILTER_TYPE_RENAMES.get(
                    input_topic.filter_type, input_topic.filter_type
                )
                filter_ids = input_topic.filter_value
                if filter_type == "operatorId" and len(filter_ids.split(":")) == 1:
                    logger.info(
                        "Pipeline uses legacy operatorId filter, fixing",
                        extra={"pipeline_id": self.id, "operator_id": operator.id},
                    )
                    filter_ids = f"{filter_ids}:{self.id}"
                inputs.append(
                    NodeInput(
                        filter_type=filter_type,
                        filter_ids=filter_ids,
                        topic_name=input_topic.name,
                        values=[
                            NodeValue(name=mapping.dest, path=mapping.source)
                            for mapping in input_topic.mappings
                        ],
                    )
                )
            nodes.append(
                PipelineNode(
                    node_id=operator.id,
                    inputs=inputs,
                    config=[
                        NodeConfig(name=key, value=value) for key, value in operator.config.items()
                    ],
                    input_selections=operator.input_selections,
                    persist_data=operator.persist_data,
                )
            )

        return PipelineRequest(
            id=self.id,
            flow_id=self.flow_id,
            name=self.name,
            description=self.description,
            window_time=(
                self.window_time if self.window_time is not None else DEFAULT_WINDOW_TIME
            ),
            consume_all_messages=self.consume_all_messages,
            metrics=self.metrics,
            nodes=nodes,
        )


# =============================================================================
# Flow engine
# =============================================================================


class NodeValue(_Model):
    name: str = ""
    path: str = ""


class NodeInput(_Model):
    filter_type: str = Field("", alias="filterType")
    filter_ids: str = Field("", alias="filterIds")
    topic_name: str = Field("", alias="topicName")
    values: list[NodeValue] = Field(default_factory=list)


class NodeConfig(_Model):
    name: str = ""
    value: str = ""


class PipelineNode(_Model):
    node_id: str = Field("", alias="nodeId")
    inputs: list[NodeInput] = Field(default_factory=list)
    config: list[NodeConfig] = Field(default_factory=list)
    input_selections: list[InputSelection] = Field(default_factory=list, alias="inputSelections")
    persist_data: dict[str, bool] | None = Field(None, alias="persistData")


class PipelineRequest(_Model):
    """Submission request understood by the flow engine."""

    id: str = ""
    flow_id: str = Field("", alias="flowId")
    name: str = ""
    description: str = ""
    window_time: int = Field(DEFAULT_WINDOW_TIME, alias="windowTime")
    consume_all_messages: bool = Field(False, alias="consumeAllMessages")
    metrics: bool = False
    nodes: list[PipelineNode] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Serving registry
# =============================================================================


class ServingInstanceValue(_Model):
    instance_id: str | None = Field(None, alias="InstanceID")
    name: str = Field("", alias="Name")
    type: str = Field("", alias="Type")
    path: str = Field("", alias="Path")
    tag: bool = Field(False, alias="Tag")


class ServingInstance(_Model):
    """An export of pipeline output into a time-series database."""

    id: str = Field(alias="ID")
    name: str = Field("", alias="Name")
    description: str = Field("", alias="Description")
    entity_name: str = Field("", alias="EntityName")
    service_name: str = Field("", alias="ServiceName")
    topic: str = Field("", alias="Topic")
    database: str = Field("", alias="Database")
    measurement: str = Field("", alias="Measurement")
    filter: str = Field("", alias="Filter")
    filter_type: str = Field("", alias="FilterType")
    time_path: str = Field("", alias="TimePath")
    time_precision: str | None = Field(None, alias="TimePrecision")
    user_id: str = Field("", alias="UserId")
    rancher_service_id: str = Field("", alias="RancherServiceId")
    offset: str = Field("", alias="Offset")
    values: list[ServingInstanceValue] = Field(default_factory=list, alias="Values")
    created_at: datetime | None = Field(None, alias="CreatedAt")
    updated_at: datetime | None = Field(None, alias="UpdatedAt")


# =============================================================================
# Cluster
# =============================================================================


class Workload(_Model):
    """A cluster-scheduled unit of compute.

    The name embeds the id of the owning pipeline or serving instance.
    """

    id: str = ""
    name: str
    image_uuid: str = Field("", alias="imageUuid")
    environment: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)


class KubeService(_Model):
    """A cluster service routing traffic to workloads.

    Target workload ids are ``<kind>:<namespace>:<workload name>``.
    """

    id: str
    base_type: str = Field("", alias="baseType")
    name: str = ""
    target_workload_ids: list[str] = Field(default_factory=list, alias="targetWorkloadIds")


class InfluxDatabase(_Model):
    """Measurements of one InfluxDB database."""

    database_id: str = Field(alias="databaseId")
    measurements: list[str] = Field(default_factory=list)


# =============================================================================
# Identity
# =============================================================================


class UserInfo(_Model):
    sub: str
    preferred_username: str | None = None


class OpenIdToken(_Model):
    access_token: str
    expires_in: float = 0
    refresh_expires_in: float = 0
    refresh_token: str = ""
    token_type: str = ""


# =============================================================================
# Bulk delete progress
# =============================================================================


@dataclass
class DeleteStatus:
    """Progress of the current or last asynchronous bulk delete."""

    total: int = 0
    remaining: int = 0
    running: bool = False
    errors: list[str] = field(default_factory=list)

    def snapshot(self) -> DeleteStatus:
        """Return an independent copy safe to hand to other tasks."""
        return DeleteStatus(
            total=self.total,
            remaining=self.remaining,
            running=self.running,
            errors=list(self.errors),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "remaining": self.remaining,
            "running": self.running,
            "errors": list(self.errors),
        }
