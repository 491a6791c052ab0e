"""Rancher v1 driver: workloads are services inside a stack.

Rancher v1 has no separate kube-service objects, so service listing is
always empty and service deletion is a no-op.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from ..config import Config
from ..errors import NotFoundError
from ..http_client import HttpClient
from ..models import Collection, KubeService, ServingInstance, Workload
from .rancher2 import serving_environment

logger = logging.getLogger(__name__)


class RancherDriver(HttpClient):
    service_name = "rancher"

    def __init__(self, config: Config, session: requests.Session | None = None) -> None:
        super().__init__(session)
        self._config = config
        self._url = config.rancher.endpoint.rstrip("/")
        self._session.auth = (config.rancher.access_key, config.rancher.secret_key)

    def _stack(self, collection: Collection) -> str:
        if collection == Collection.SERVING:
            return self._config.rancher.serving_stack_id
        return self._config.rancher.pipelines_stack_id

    def _list_services(self, collection: Collection) -> list[dict[str, Any]]:
        response = self._request("GET", f"{self._url}/stacks/{self._stack(collection)}/services")
        body = self._parse(response, dict[str, Any])
        return list(body.get("data") or [])

    @staticmethod
    def _launch_config(item: dict[str, Any]) -> dict[str, Any]:
        launch = item.get("launchConfig")
        return launch if isinstance(launch, dict) else item

    def get_workloads(self, collection: Collection) -> list[Workload]:
        workloads = []
        for item in self._list_services(collection):
            launch = self._launch_config(item)
            workloads.append(
                Workload(
                    id=item.get("id", ""),
                    name=item.get("name", ""),
                    image_uuid=launch.get("imageUuid", ""),
                    environment=launch.get("environment") or {},
                    labels=launch.get("labels") or {},
                )
            )
        return workloads

    def get_workload_envs(self, collection: Collection) -> list[dict[str, str]]:
        return [
            dict(self._launch_config(item).get("environment") or {})
            for item in self._list_services(collection)
        ]

    def get_services(self, collection: Collection) -> list[KubeService]:
        return []

    def delete_service(self, service_id: str, collection: Collection) -> None:
        logger.debug(
            "Rancher v1 has no kube services, nothing to delete",
            extra={"service_id": service_id},
        )

    def _service_id_by_name(self, name: str) -> str:
        response = self._request("GET", f"{self._url}/services/", params={"name": name})
        body = self._parse(response, dict[str, Any])
        data = body.get("data") or []
        if not data:
            raise NotFoundError(f"rancher: no service named {name}")
        return str(data[0].get("id", ""))

    def delete_workload(self, name: str, collection: Collection) -> None:
        service_id = self._service_id_by_name(name)
        self._request("DELETE", f"{self._url}/services/{service_id}", expected=(200, 202, 204))
        logger.info(
            "Deleted workload", extra={"workload": name, "collection": collection.value}
        )

    def create_serving_instance(
        self, instance: ServingInstance, data_fields: str, tag_fields: str
    ) -> str:
        body = {
            "type": "service",
            "name": f"kafka-influx-{instance.id}",
            "stackId": self._config.rancher.serving_stack_id,
            "scale": 1,
            "startOnCreate": True,
            "launchConfig": {
                "imageUuid": f"docker:{self._config.transfer_image}",
                "environment": serving_environment(
                    self._config, instance, data_fields, tag_fields
                ),
                "labels": {
                    "io.rancher.container.pull_image": "always",
                    "io.rancher.scheduler.affinity:host_label": "role=worker",
                },
            },
        }
        response = self._request("POST", f"{self._url}/services", expected=(201,), json=body)
        created = self._parse(response, dict[str, Any])
        logger.info("Created serving service", extra={"instance_id": instance.id})
        return str(created.get("id", ""))
