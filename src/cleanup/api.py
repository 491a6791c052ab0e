"""HTTP API exposing orphan listing and deletion to administrators.

Every route except ``/health`` requires the ``admin`` role, taken either
from the ``X-User-Roles`` header set by the gateway or from the
``realm_access.roles`` claim of the bearer token. Tokens are decoded
without signature verification; the gateway in front of this service
validates them.

Errors are mapped to status codes with a generic message only; details
stay in the server log.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import jwt
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from . import __version__
from .errors import CleanupError, ConflictError, NotFoundError
from .models import Collection, InfluxDatabase, KubeService, Pipeline, ServingInstance, Workload
from .service import CleanupService

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

NO_CONTENT = status.HTTP_204_NO_CONTENT


@dataclass(frozen=True)
class Caller:
    """Identity of the request's caller."""

    user_id: str
    token: str
    roles: frozenset[str]

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def _token_claims(token: str) -> dict[str, Any]:
    if not token:
        return {}
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug("Ignoring undecodable bearer token", extra={"error": str(e)})
        return {}


def get_caller(request: Request) -> Caller:
    token = _bearer_token(request)
    claims = _token_claims(token)

    roles: set[str] = set()
    header_roles = request.headers.get("X-User-Roles", "")
    roles.update(role.strip() for role in header_roles.split(",") if role.strip())
    realm_access = claims.get("realm_access")
    if isinstance(realm_access, dict):
        roles.update(str(role) for role in realm_access.get("roles") or [])

    user_id = request.headers.get("X-UserId") or str(claims.get("sub") or "")
    return Caller(user_id=user_id, token=token, roles=frozenset(roles))


def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_admin:
        logger.warning("Rejected non-admin caller", extra={"user_id": caller.user_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return caller


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        logger.info("Not found", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(status_code=404, content={"detail": "not found"})

    @app.exception_handler(ConflictError)
    async def conflict(request: Request, exc: ConflictError) -> JSONResponse:
        logger.info("Conflict", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(status_code=409, content={"detail": "conflict"})

    @app.exception_handler(CleanupError)
    async def cleanup_error(request: Request, exc: CleanupError) -> JSONResponse:
        logger.error("Request failed", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(status_code=500, content={"detail": "internal server error"})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"detail": "internal server error"})


def create_app(service: CleanupService, url_prefix: str = "") -> FastAPI:
    """Build the API around a cleanup service."""
    url_prefix = url_prefix.rstrip("/")
    app = FastAPI(title="analytics-cleanup", version=__version__)
    _install_error_handlers(app)

    @app.get(f"{url_prefix}/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    router = APIRouter(prefix=url_prefix, dependencies=[Depends(require_admin)])

    # =========================================================================
    # Pipelines
    # =========================================================================

    @router.get("/pipeservices")
    async def get_pipe_services(caller: Caller = Depends(get_caller)) -> list[Pipeline]:
        return await service.get_orphaned_pipeline_services(caller.user_id, caller.token)

    @router.delete("/pipeservices")
    async def delete_pipe_services(caller: Caller = Depends(get_caller)) -> list[Pipeline]:
        return await service.delete_orphaned_pipeline_services(caller.user_id, caller.token)

    @router.delete("/pipeservices/{pipeline_id}", status_code=NO_CONTENT)
    async def delete_pipe_service(pipeline_id: str, caller: Caller = Depends(get_caller)) -> None:
        await service.delete_orphaned_pipeline_service(pipeline_id, caller.token)

    @router.get("/analyticsworkloads")
    async def get_analytics_workloads(caller: Caller = Depends(get_caller)) -> list[Workload]:
        return await service.get_orphaned_analytics_workloads(caller.user_id, caller.token)

    @router.delete("/analyticsworkloads")
    async def delete_analytics_workloads(caller: Caller = Depends(get_caller)) -> list[Workload]:
        return await service.delete_orphaned_analytics_workloads(caller.user_id, caller.token)

    @router.delete("/analyticsworkloads/{name}", status_code=NO_CONTENT)
    async def delete_analytics_workload(name: str) -> None:
        await service.delete_orphaned_analytics_workload(name)

    @router.get("/pipelinekubeservices")
    async def get_pipeline_kube_services() -> list[KubeService]:
        return await service.get_orphaned_kube_services(Collection.PIPELINE)

    @router.delete("/pipelinekubeservices")
    async def delete_pipeline_kube_services() -> list[KubeService]:
        return await service.delete_orphaned_kube_services(Collection.PIPELINE)

    @router.delete("/pipelinekubeservices/{service_id}", status_code=NO_CONTENT)
    async def delete_pipeline_kube_service(service_id: str) -> None:
        await service.delete_orphaned_kube_service(Collection.PIPELINE, service_id)

    # =========================================================================
    # Kafka topics
    # =========================================================================

    @router.get("/kafkatopics")
    async def get_kafka_topics() -> list[str]:
        return await service.get_orphaned_kafka_topics()

    @router.get("/kafkatopics/status")
    async def get_kafka_topics_status() -> dict[str, Any]:
        return service.get_delete_orphaned_kafka_topics_status().to_dict()

    @router.post("/kafkatopics/stop")
    async def stop_kafka_topics_delete() -> dict[str, Any]:
        service.stop_delete_orphaned_kafka_topics()
        return service.get_delete_orphaned_kafka_topics_status().to_dict()

    @router.delete("/kafkatopics", status_code=status.HTTP_202_ACCEPTED)
    async def delete_kafka_topics() -> dict[str, Any]:
        started = await service.delete_orphaned_kafka_topics()
        return started.to_dict()

    @router.delete("/kafkatopics/{name}", status_code=NO_CONTENT)
    async def delete_kafka_topic(name: str) -> None:
        await service.delete_orphaned_kafka_topic(name)

    # =========================================================================
    # Serving instances
    # =========================================================================

    @router.get("/servingservices")
    async def get_serving_services(caller: Caller = Depends(get_caller)) -> list[ServingInstance]:
        return await service.get_orphaned_serving_services(caller.user_id, caller.token)

    @router.delete("/servingservices")
    async def delete_serving_services(
        caller: Caller = Depends(get_caller),
    ) -> list[ServingInstance]:
        return await service.delete_orphaned_serving_services(caller.user_id, caller.token)

    @router.delete("/servingservices/{instance_id}", status_code=NO_CONTENT)
    async def delete_serving_service(
        instance_id: str, caller: Caller = Depends(get_caller)
    ) -> None:
        await service.delete_orphaned_serving_service(instance_id, caller.user_id, caller.token)

    @router.get("/servingworkloads")
    async def get_serving_workloads(caller: Caller = Depends(get_caller)) -> list[Workload]:
        return await service.get_orphaned_serving_workloads(caller.user_id, caller.token)

    @router.delete("/servingworkloads")
    async def delete_serving_workloads(caller: Caller = Depends(get_caller)) -> list[Workload]:
        return await service.delete_orphaned_serving_workloads(caller.user_id, caller.token)

    @router.delete("/servingworkloads/{name}", status_code=NO_CONTENT)
    async def delete_serving_workload(name: str) -> None:
        await service.delete_orphaned_serving_workload(name)

    @router.get("/servingkubeservices")
    async def get_serving_kube_services() -> list[KubeService]:
        return await service.get_orphaned_kube_services(Collection.SERVING)

    @router.delete("/servingkubeservices")
    async def delete_serving_kube_services() -> list[KubeService]:
        return await service.delete_orphaned_kube_services(Collection.SERVING)

    @router.delete("/servingkubeservices/{service_id}", status_code=NO_CONTENT)
    async def delete_serving_kube_service(service_id: str) -> None:
        await service.delete_orphaned_kube_service(Collection.SERVING, service_id)

    # =========================================================================
    # InfluxDB measurements
    # =========================================================================

    @router.get("/influxmeasurements")
    async def get_influx_measurements(
        caller: Caller = Depends(get_caller),
    ) -> list[InfluxDatabase]:
        return await service.get_orphaned_influx_measurements(caller.user_id, caller.token)

    @router.delete("/influxmeasurements/{database}/{measurement}", status_code=NO_CONTENT)
    async def delete_influx_measurement(database: str, measurement: str) -> None:
        await service.delete_orphaned_influx_measurement(database, measurement)

    app.include_router(router)
    return app
