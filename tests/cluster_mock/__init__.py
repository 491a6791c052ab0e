"""In-memory collaborators for testing the cleanup service.

This package provides fakes for every collaborator the service talks to,
so service, API and CLI tests run without a cluster, a broker or Keycloak.

Key Features:
- In-memory state for workloads, kube services, pipelines, serving
  instances, topics and measurements
- Call recording for assertions
- Failure injection per method or per item
- Gated topic deletes to stop a bulk delete at a known point

Usage:
    from cluster_mock import MockCleanupContext, make_pipeline

    ctx = MockCleanupContext()
    ctx.pipelines.pipelines.append(make_pipeline(PIPE_1))
    deleted = await ctx.service.delete_orphaned_pipeline_services("u", "t")
    assert ctx.pipelines.pipeline_ids() == []
"""

from .base import MockCollaborator
from .context import (
    PIPE_1,
    PIPE_2,
    PIPE_3,
    MockCleanupContext,
    application_env,
    internal_topic,
    make_pipeline,
    make_serving,
)
from .driver import MockClusterDriver
from .identity import SERVICE_TOKEN, SERVICE_USER_ID, MockIdentityProvider
from .influx import MockMeasurementStore
from .kafka import MockTopicAdmin
from .registries import MockPipelineRegistry, MockServingRegistry

__all__ = [
    "PIPE_1",
    "PIPE_2",
    "PIPE_3",
    "SERVICE_TOKEN",
    "SERVICE_USER_ID",
    "MockCleanupContext",
    "MockClusterDriver",
    "MockCollaborator",
    "MockIdentityProvider",
    "MockMeasurementStore",
    "MockPipelineRegistry",
    "MockServingRegistry",
    "MockTopicAdmin",
    "application_env",
    "internal_topic",
    "make_pipeline",
    "make_serving",
]
