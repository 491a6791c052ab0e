"""Tests for the HTTP API."""

import threading
import time
from collections.abc import Iterator
from typing import Any

import jwt
import pytest
from cluster_mock import (
    PIPE_1,
    PIPE_2,
    MockCleanupContext,
    application_env,
    internal_topic,
    make_pipeline,
    make_serving,
)
from fastapi.testclient import TestClient

from cleanup.api import create_app
from cleanup.errors import UpstreamError
from cleanup.models import Collection

# The API does not verify signatures; any key works
SIGNING_KEY = "test-signing-key-with-at-least-32-bytes"

ADMIN = {"X-User-Roles": "user,admin", "X-UserId": "admin-1", "Authorization": "Bearer t-1"}


@pytest.fixture
def ctx() -> MockCleanupContext:
    return MockCleanupContext()


@pytest.fixture
def client(ctx: MockCleanupContext) -> Iterator[TestClient]:
    with TestClient(create_app(ctx.service)) as test_client:
        yield test_client


def _wait_for_idle(client: TestClient, timeout: float = 5.0) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while True:
        body: dict[str, Any] = client.get("/kafkatopics/status", headers=ADMIN).json()
        if not body["running"] or time.monotonic() > deadline:
            return body
        time.sleep(0.01)


class TestAuthorization:
    """Tests for the admin role check."""

    def test_health_is_public(self, client: TestClient) -> None:
        """Test that the health route needs no role."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_role_forbidden(self, client: TestClient) -> None:
        """Test that callers without the admin role get 403."""
        assert client.get("/pipeservices").status_code == 403
        assert client.get("/kafkatopics", headers={"X-User-Roles": "user"}).status_code == 403
        assert client.post("/kafkatopics/stop").status_code == 403

    def test_admin_role_from_header(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test that the gateway role header grants access and sets the caller."""
        response = client.get("/pipeservices", headers=ADMIN)

        assert response.status_code == 200
        assert ctx.pipelines.calls_of("get_pipelines") == [("admin-1", "t-1")]

    def test_admin_role_from_token(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test that realm roles in the bearer token grant access."""
        token = jwt.encode(
            {"sub": "user-7", "realm_access": {"roles": ["offline_access", "admin"]}},
            SIGNING_KEY,
            algorithm="HS256",
        )

        response = client.get("/pipeservices", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert ctx.pipelines.calls_of("get_pipelines") == [("user-7", token)]

    def test_token_without_admin_role(self, client: TestClient) -> None:
        """Test that a token without the admin realm role is rejected."""
        token = jwt.encode({"sub": "user-7", "realm_access": {"roles": ["user"]}}, SIGNING_KEY)

        response = client.get("/pipeservices", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 403

    def test_garbage_token_forbidden(self, client: TestClient) -> None:
        """Test that an undecodable token is treated as no token."""
        response = client.get("/pipeservices", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 403


class TestOrphanRoutes:
    """Tests for the listing and synchronous delete routes."""

    def test_list_orphaned_pipelines(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test that pipelines are returned with their wire field names."""
        ctx.pipelines.pipelines = [make_pipeline(PIPE_1), make_pipeline(PIPE_2)]
        ctx.driver.add_workload(f"analytics-{PIPE_2}-op-1")

        body = client.get("/pipeservices", headers=ADMIN).json()

        assert [pipe["id"] for pipe in body] == [PIPE_1]
        assert body[0]["userId"] == "owner-1"

    def test_bulk_delete_returns_deleted(
        self, client: TestClient, ctx: MockCleanupContext
    ) -> None:
        """Test that a bulk delete returns the deleted items."""
        ctx.driver.add_workload(f"analytics-{PIPE_1}-op-1")

        response = client.delete("/analyticsworkloads", headers=ADMIN)

        assert response.status_code == 200
        assert [w["name"] for w in response.json()] == [f"analytics-{PIPE_1}-op-1"]
        assert ctx.driver.workload_names() == []

    def test_single_delete_no_content(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test that a single delete answers 204."""
        ctx.pipelines.pipelines = [make_pipeline(PIPE_1)]

        response = client.delete(f"/pipeservices/{PIPE_1}", headers=ADMIN)

        assert response.status_code == 204
        assert response.content == b""
        assert ctx.pipelines.calls_of("delete_pipeline") == [(PIPE_1, "t-1")]

    def test_not_found_maps_to_404(self, client: TestClient) -> None:
        """Test that a missing resource yields 404."""
        response = client.delete("/analyticsworkloads/absent", headers=ADMIN)

        assert response.status_code == 404
        assert response.json() == {"detail": "not found"}

    def test_upstream_error_is_generic_500(
        self, client: TestClient, ctx: MockCleanupContext
    ) -> None:
        """Test that upstream details are not leaked to the caller."""
        ctx.driver.fail("get_services", UpstreamError("rancher said: secret internals"))

        response = client.get("/pipelinekubeservices", headers=ADMIN)

        assert response.status_code == 500
        assert "secret" not in response.text
        assert response.json() == {"detail": "internal server error"}

    def test_kube_services_per_collection(
        self, client: TestClient, ctx: MockCleanupContext
    ) -> None:
        """Test that pipeline and serving kube services are listed separately."""
        ctx.driver.add_service("svc-p", ["deployment:ns:gone"])
        ctx.driver.add_service("svc-s", ["deployment:ns:gone"], Collection.SERVING)

        pipeline_body = client.get("/pipelinekubeservices", headers=ADMIN).json()
        serving_body = client.get("/servingkubeservices", headers=ADMIN).json()

        assert [s["id"] for s in pipeline_body] == ["svc-p"]
        assert [s["id"] for s in serving_body] == ["svc-s"]
        assert pipeline_body[0]["targetWorkloadIds"] == ["deployment:ns:gone"]

    def test_serving_routes(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test serving listing and single delete."""
        ctx.serving_registry.servings = [make_serving("s-1")]

        listed = client.get("/servingservices", headers=ADMIN).json()
        deleted = client.delete("/servingservices/s-1", headers=ADMIN)

        assert [s["ID"] for s in listed] == ["s-1"]
        assert deleted.status_code == 204
        assert ctx.serving_registry.serving_ids() == []

    def test_influx_routes(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test measurement listing and delete."""
        ctx.measurement_store.databases = {"db1": ["old"]}

        listed = client.get("/influxmeasurements", headers=ADMIN).json()
        deleted = client.delete("/influxmeasurements/db1/old", headers=ADMIN)

        assert listed == [{"databaseId": "db1", "measurements": ["old"]}]
        assert deleted.status_code == 204
        assert ctx.measurement_store.databases == {"db1": []}


class TestKafkaRoutes:
    """Tests for the Kafka topic routes."""

    def test_list_orphaned_topics(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test that only orphaned internal topics are listed."""
        ctx.topics.topics = [internal_topic(PIPE_1), internal_topic(PIPE_2), "device-events"]
        ctx.driver.add_workload("op", environment=application_env(PIPE_2))

        assert client.get("/kafkatopics", headers=ADMIN).json() == [internal_topic(PIPE_1)]

    def test_status_while_idle(self, client: TestClient) -> None:
        """Test that status is served before any run."""
        response = client.get("/kafkatopics/status", headers=ADMIN)

        assert response.status_code == 200
        assert response.json() == {"total": 0, "remaining": 0, "running": False, "errors": []}

    def test_stop_while_idle_conflicts(self, client: TestClient) -> None:
        """Test that stopping without a run yields 409."""
        response = client.post("/kafkatopics/stop", headers=ADMIN)

        assert response.status_code == 409

    def test_bulk_delete_accepted_and_completes(
        self, client: TestClient, ctx: MockCleanupContext
    ) -> None:
        """Test that the bulk delete starts in the background."""
        ctx.topics.topics = [internal_topic(PIPE_1), internal_topic(PIPE_2)]

        response = client.delete("/kafkatopics", headers=ADMIN)

        assert response.status_code == 202
        assert response.json()["total"] == 2
        assert _wait_for_idle(client) == {
            "total": 2,
            "remaining": 0,
            "running": False,
            "errors": [],
        }
        assert ctx.topics.get_topics() == []

    def test_conflict_and_stop(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test that a second start conflicts and stop aborts the run."""
        ctx.topics.topics = [internal_topic(PIPE_1), internal_topic(PIPE_2)]
        ctx.topics.gate = threading.Event()

        assert client.delete("/kafkatopics", headers=ADMIN).status_code == 202
        assert client.delete("/kafkatopics", headers=ADMIN).status_code == 409
        assert client.post("/kafkatopics/stop", headers=ADMIN).status_code == 200
        ctx.topics.gate.set()

        status = _wait_for_idle(client)

        assert status["running"] is False
        assert status["errors"] == ["aborted"]

    def test_single_topic_delete(self, client: TestClient, ctx: MockCleanupContext) -> None:
        """Test the synchronous single topic delete."""
        ctx.topics.topics = ["some-topic"]

        assert client.delete("/kafkatopics/some-topic", headers=ADMIN).status_code == 204
        assert client.delete("/kafkatopics/some-topic", headers=ADMIN).status_code == 404


class TestUrlPrefix:
    """Tests for serving the API below a path prefix."""

    def test_routes_below_prefix(self, ctx: MockCleanupContext) -> None:
        """Test that routes and health move below the prefix."""
        with TestClient(create_app(ctx.service, "/cleanup/")) as client:
            assert client.get("/cleanup/health").status_code == 200
            assert client.get("/cleanup/kafkatopics", headers=ADMIN).status_code == 200
            assert client.get("/kafkatopics", headers=ADMIN).status_code == 404
