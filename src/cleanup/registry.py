"""Clients for the pipeline registry, the flow engine and the serving registry."""

from __future__ import annotations

import logging

import requests

from .http_client import HttpClient
from .models import Pipeline, PipelineRequest, ServingInstance

logger = logging.getLogger(__name__)


def _auth_headers(access_token: str, user_id: str | None = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {access_token}"}
    if user_id:
        headers["X-UserId"] = user_id
    return headers


class PipelineRegistryClient(HttpClient):
    """Pipeline registry (stored pipelines) plus flow engine (deployments)."""

    service_name = "pipeline-registry"

    def __init__(
        self,
        pipeline_url: str,
        engine_url: str,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(session)
        self._pipeline_url = pipeline_url.rstrip("/")
        self._engine_url = engine_url.rstrip("/")

    def get_pipelines(self, user_id: str, access_token: str) -> list[Pipeline]:
        response = self._request(
            "GET",
            f"{self._pipeline_url}/admin/pipeline",
            headers=_auth_headers(access_token, user_id),
        )
        return self._parse(response, list[Pipeline])

    def delete_pipeline(self, pipeline_id: str, access_token: str) -> None:
        self._request(
            "DELETE",
            f"{self._pipeline_url}/admin/pipeline/{pipeline_id}",
            expected=(200, 204),
            headers=_auth_headers(access_token),
        )
        logger.info("Deleted pipeline", extra={"pipeline_id": pipeline_id})

    def create_pipeline(self, request: PipelineRequest, user_id: str, user_token: str) -> None:
        """Submit a pipeline to the flow engine on behalf of ``user_id``."""
        self._request(
            "PUT",
            f"{self._engine_url}/pipeline",
            json=request.to_payload(),
            headers=_auth_headers(user_token, user_id),
        )
        logger.info(
            "Submitted pipeline to flow engine",
            extra={"pipeline_id": request.id, "pipeline_name": request.name, "user_id": user_id},
        )


class ServingRegistryClient(HttpClient):
    service_name = "serving-registry"

    def __init__(self, serving_url: str, session: requests.Session | None = None) -> None:
        super().__init__(session)
        self._serving_url = serving_url.rstrip("/")

    def get_serving_instances(self, user_id: str, access_token: str) -> list[ServingInstance]:
        response = self._request(
            "GET",
            f"{self._serving_url}/admin/instance",
            headers=_auth_headers(access_token, user_id),
        )
        return self._parse(response, list[ServingInstance])

    def delete_serving_instance(self, instance_id: str, user_id: str, access_token: str) -> None:
        self._request(
            "DELETE",
            f"{self._serving_url}/admin/instance/{instance_id}",
            expected=(204,),
            headers=_auth_headers(access_token, user_id),
        )
        logger.info("Deleted serving instance", extra={"instance_id": instance_id})
