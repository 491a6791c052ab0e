"""Rancher v2 driver: workloads and services live in project namespaces.

Pipeline and serving workloads are kept in separate projects; the
collection tag picks the project/namespace pair for every call.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from ..config import Config
from ..http_client import HttpClient
from ..models import Collection, KubeService, ServingInstance, Workload

logger = logging.getLogger(__name__)

# Page size large enough to list every service of a namespace in one call
SERVICE_LIST_LIMIT = 2000

SERVING_WORKLOAD_PREFIX = "kafka2influx-"


def serving_environment(
    config: Config, instance: ServingInstance, data_fields: str, tag_fields: str
) -> dict[str, str]:
    """Env of the kafka-to-influx transfer workload backing a serving instance."""
    env = {
        "KAFKA_GROUP_ID": f"transfer-{instance.id}",
        "KAFKA_BOOTSTRAP": config.kafka_bootstrap,
        "KAFKA_TOPIC": instance.topic,
        "DATA_MEASUREMENT": instance.measurement,
        "DATA_FIELDS_MAPPING": data_fields,
        "DATA_TAGS_MAPPING": tag_fields,
        "DATA_TIME_MAPPING": instance.time_path,
        "DATA_FILTER_ID": instance.filter,
        "INFLUX_DB": instance.database,
        "INFLUX_HOST": config.influx.host,
        "INFLUX_PORT": str(config.influx.port),
        "INFLUX_USER": config.influx.username,
        "INFLUX_PW": config.influx.password,
        "OFFSET_RESET": instance.offset,
    }
    if instance.time_precision:
        env["TIME_PRECISION"] = instance.time_precision
    if instance.filter_type in ("operatorId", "import_id"):
        env["DATA_FILTER_ID_MAPPING"] = (
            "operator_id" if instance.filter_type == "operatorId" else "import_id"
        )
    return env


def _container_env(container: dict[str, Any]) -> dict[str, str]:
    env = container.get("env")
    if isinstance(env, list):
        return {str(item.get("name")): str(item.get("value", "")) for item in env}
    environment = container.get("environment")
    if isinstance(environment, dict):
        return {str(k): str(v) for k, v in environment.items()}
    return {}


class Rancher2Driver(HttpClient):
    service_name = "rancher2"

    def __init__(self, config: Config, session: requests.Session | None = None) -> None:
        super().__init__(session)
        self._config = config
        self._url = config.rancher2.endpoint.rstrip("/")
        self._session.auth = (config.rancher2.access_key, config.rancher2.secret_key)

    def _scope(self, collection: Collection) -> tuple[str, str]:
        """Return (project id, namespace id) for a collection."""
        settings = self._config.rancher2
        if collection == Collection.SERVING:
            return settings.serving_project_id, settings.serving_namespace_id
        return settings.pipeline_project_id, settings.pipeline_namespace_id

    def _list_workloads(self, collection: Collection) -> list[dict[str, Any]]:
        project, namespace = self._scope(collection)
        response = self._request(
            "GET",
            f"{self._url}/projects/{project}/workloads/",
            params={"namespaceId": namespace},
        )
        body = self._parse(response, dict[str, Any])
        return list(body.get("data") or [])

    def get_workloads(self, collection: Collection) -> list[Workload]:
        workloads = []
        for item in self._list_workloads(collection):
            containers = item.get("containers") or [{}]
            workloads.append(
                Workload(
                    id=item.get("id", ""),
                    name=item.get("name", ""),
                    image_uuid=containers[0].get("image", ""),
                    environment=_container_env(containers[0]),
                    labels=item.get("labels") or {},
                )
            )
        return workloads

    def get_workload_envs(self, collection: Collection) -> list[dict[str, str]]:
        envs = []
        for item in self._list_workloads(collection):
            for container in item.get("containers") or []:
                envs.append(_container_env(container))
        return envs

    def get_services(self, collection: Collection) -> list[KubeService]:
        project, namespace = self._scope(collection)
        response = self._request(
            "GET",
            f"{self._url}/projects/{project}/services/",
            params={"limit": SERVICE_LIST_LIMIT, "namespaceId": namespace},
        )
        body = self._parse(response, dict[str, Any])
        return [
            KubeService(
                id=item.get("id", ""),
                name=item.get("name", ""),
                base_type=item.get("baseType", ""),
                target_workload_ids=item.get("targetWorkloadIds") or [],
            )
            for item in body.get("data") or []
        ]

    def delete_workload(self, name: str, collection: Collection) -> None:
        project, namespace = self._scope(collection)
        self._request(
            "DELETE",
            f"{self._url}/projects/{project}/workloads/deployment:{namespace}:{name}",
            expected=(200, 204),
        )
        logger.info(
            "Deleted workload", extra={"workload": name, "collection": collection.value}
        )

    def delete_service(self, service_id: str, collection: Collection) -> None:
        project, _ = self._scope(collection)
        # Service deletes go through the singular project route
        self._request(
            "DELETE",
            f"{self._url}/project/{project}/services/{service_id}",
            expected=(200, 204),
        )
        logger.info(
            "Deleted kube service",
            extra={"service_id": service_id, "collection": collection.value},
        )

    def create_serving_instance(
        self, instance: ServingInstance, data_fields: str, tag_fields: str
    ) -> str:
        project, namespace = self._scope(Collection.SERVING)
        env = serving_environment(self._config, instance, data_fields, tag_fields)
        body = {
            "name": f"{SERVING_WORKLOAD_PREFIX}{instance.id}",
            "namespaceId": namespace,
            "containers": [
                {
                    "image": self._config.transfer_image,
                    "name": "kafka2influx",
                    "env": [{"name": k, "value": v} for k, v in env.items()],
                    "imagePullPolicy": "Always",
                }
            ],
            "scheduling": {
                "scheduler": "default-scheduler",
                "node": {"requireAll": ["role=worker"]},
            },
            "labels": {"exportId": instance.id},
            "selector": {"matchLabels": {"exportId": instance.id}},
        }
        response = self._request(
            "POST", f"{self._url}/projects/{project}/workloads", expected=(201,), json=body
        )
        created = self._parse(response, dict[str, Any])
        logger.info("Created serving workload", extra={"instance_id": instance.id})
        return str(created.get("id", ""))
