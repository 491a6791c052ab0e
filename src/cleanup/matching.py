"""Matching predicates between declared entities and runtime resources.

Resource names embed the id of the entity that owns them, so every check
here is substring containment on names. All name matching lives in this
module; nothing else in the package inspects names.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping

from .models import KubeService, Pipeline, ServingInstance, ServingInstanceValue, Workload

APPLICATION_ID_ENV = "CONFIG_APPLICATION_ID"

_UUID = r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}"

INTERNAL_ANALYTICS_TOPIC_RE = re.compile(rf"(analytics-{_UUID}.*-(repartition|changelog))")
ANALYTICS_PIPELINE_ID_RE = re.compile(rf"analytics-({_UUID})")

# <kind>:<namespace>:<workload name>
TARGET_WORKLOAD_SEGMENTS = 3


def pipe_in_workloads(pipe: Pipeline, workloads: Iterable[Workload]) -> bool:
    """True iff some workload name contains the pipeline id."""
    return any(pipe.id in workload.name for workload in workloads)


def workload_in_pipes(workload: Workload, pipes: Iterable[Pipeline]) -> bool:
    """True iff some pipeline id is a substring of the workload name."""
    return any(pipe.id in workload.name for pipe in pipes)


def serving_in_workloads(serving: ServingInstance, workloads: Iterable[Workload]) -> bool:
    return any(serving.id in workload.name for workload in workloads)


def workload_in_servings(workload: Workload, servings: Iterable[ServingInstance]) -> bool:
    return any(serving.id in workload.name for serving in servings)


def service_in_workloads(service: KubeService, workloads: Iterable[Workload]) -> bool:
    """True iff the workload targeted by the service still exists.

    Only the first target is inspected. A target that does not split into
    three colon segments, or a service without targets, cannot be
    resolved and counts as not found.
    """
    if not service.target_workload_ids:
        return False
    segments = service.target_workload_ids[0].split(":")
    if len(segments) != TARGET_WORKLOAD_SEGMENTS:
        return False
    workload_name = segments[2]
    return any(workload.name == workload_name for workload in workloads)


def is_internal_analytics_topic(topic: str) -> bool:
    """True for Kafka Streams internal topics of analytics operators."""
    return INTERNAL_ANALYTICS_TOPIC_RE.search(topic) is not None


def extract_pipeline_id(topic: str) -> str:
    """Return the pipeline uuid embedded in a topic name, or ""."""
    match = ANALYTICS_PIPELINE_ID_RE.search(topic)
    if match is None:
        return ""
    return match.group(1)


def pipeline_exists(topic: str, envs: Iterable[Mapping[str, str]]) -> bool:
    """True iff some workload env's application id starts with the topic's pipeline id.

    Application ids are written either as ``analytics-<uuid>...`` or as the
    bare ``<uuid>...``; both prefixes are accepted.
    """
    pipeline_id = extract_pipeline_id(topic)
    prefixes = (f"analytics-{pipeline_id}", pipeline_id)
    for env in envs:
        app_id = env.get(APPLICATION_ID_ENV)
        if app_id is None:
            continue
        if app_id.startswith(prefixes):
            return True
    return False


def measurement_in_servings(measurement: str, servings: Iterable[ServingInstance]) -> bool:
    return any(measurement == serving.measurement for serving in servings)


def serving_value_fields(values: Iterable[ServingInstanceValue]) -> tuple[str, str]:
    """Split serving values into data-field and tag-field JSON mappings.

    Each mapping is ``{"<name>:<type>": "<path>"}`` serialised to JSON, the
    format the kafka-to-influx transfer workload reads from its env.
    """
    data_fields: dict[str, str] = {}
    tag_fields: dict[str, str] = {}
    for value in values:
        target = tag_fields if value.tag else data_fields
        target[f"{value.name}:{value.type}"] = value.path
    return json.dumps(data_fields), json.dumps(tag_fields)
