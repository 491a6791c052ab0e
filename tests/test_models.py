"""Tests for the Pydantic models."""

import pytest
from pydantic import ValidationError

from cleanup.models import DeleteStatus, Pipeline, ServingInstance, Workload

PIPE_ID = "0c5b5f5e-2a6c-4e5f-9a3b-1d2e3f4a5b6c"


def _stored_pipeline(**overrides: object) -> dict[str, object]:
    data: dict[str, object] = {
        "id": PIPE_ID,
        "name": "temperature alerts",
        "flowId": "flow-1",
        "UserId": "owner-1",
        "operators": [
            {
                "id": "op-1",
                "name": "adder",
                "imageId": "registry/adder:1",
                "deploymentType": "cloud",
                "operatorId": "adder",
                "config": {"threshold": "30"},
                "inputTopics": [
                    {
                        "name": "device-events",
                        "filterType": "DeviceId",
                        "filterValue": "device-1",
                        "mappings": [{"dest": "value", "source": "value.reading"}],
                    },
                    {
                        "name": "analytics-adder",
                        "filterType": "OperatorId",
                        "filterValue": "op-0",
                        "mappings": [],
                    },
                ],
            }
        ],
    }
    data.update(overrides)
    return data


class TestPipeline:
    """Tests for the stored pipeline model."""

    def test_parse_stored_pipeline(self) -> None:
        """Test parsing a registry response."""
        pipe = Pipeline.model_validate(_stored_pipeline())

        assert pipe.id == PIPE_ID
        assert pipe.user_id == "owner-1"
        assert pipe.operators[0].input_topics[0].filter_type == "DeviceId"
        assert pipe.has_local_operator is False

    def test_missing_id_rejected(self) -> None:
        """Test that a pipeline without id does not validate."""
        data = _stored_pipeline()
        del data["id"]
        with pytest.raises(ValidationError):
            Pipeline.model_validate(data)

    def test_local_operator_detected(self) -> None:
        """Test the local operator flag."""
        data = _stored_pipeline()
        data["operators"][0]["deploymentType"] = "local"  # type: ignore[index]
        assert Pipeline.model_validate(data).has_local_operator is True


class TestPipelineToRequest:
    """Tests for rebuilding flow-engine requests from stored pipelines."""

    def test_operators_become_nodes(self) -> None:
        """Test the operator graph translation."""
        request = Pipeline.model_validate(_stored_pipeline()).to_request()

        assert request.id == PIPE_ID
        assert request.flow_id == "flow-1"
        assert len(request.nodes) == 1
        node = request.nodes[0]
        assert node.node_id == "op-1"
        assert [(c.name, c.value) for c in node.config] == [("threshold", "30")]
        assert node.inputs[0].topic_name == "device-events"
        assert [(v.name, v.path) for v in node.inputs[0].values] == [("value", "value.reading")]

    def test_filter_types_normalised(self) -> None:
        """Test that legacy capitalised filter types are renamed."""
        request = Pipeline.model_validate(_stored_pipeline()).to_request()

        assert [i.filter_type for i in request.nodes[0].inputs] == ["deviceId", "operatorId"]

    def test_legacy_operator_filter_gets_pipeline_suffix(self) -> None:
        """Test that an operatorId filter without suffix is migrated."""
        request = Pipeline.model_validate(_stored_pipeline()).to_request()

        assert request.nodes[0].inputs[1].filter_ids == f"op-0:{PIPE_ID}"
        assert request.nodes[0].inputs[0].filter_ids == "device-1"

    def test_operator_filter_with_suffix_unchanged(self) -> None:
        """Test that an already migrated operatorId filter is kept."""
        data = _stored_pipeline()
        data["operators"][0]["inputTopics"][1]["filterValue"] = "op-0:other"  # type: ignore[index]
        request = Pipeline.model_validate(data).to_request()

        assert request.nodes[0].inputs[1].filter_ids == "op-0:other"

    def test_window_time_defaults(self) -> None:
        """Test that a missing window time falls back to 30 and a set one is kept."""
        assert Pipeline.model_validate(_stored_pipeline()).to_request().window_time == 30
        stored = Pipeline.model_validate(_stored_pipeline(windowTime=120))
        assert stored.to_request().window_time == 120

    def test_payload_uses_wire_names(self) -> None:
        """Test that the payload is serialised with camelCase keys."""
        payload = Pipeline.model_validate(_stored_pipeline()).to_request().to_payload()

        assert payload["flowId"] == "flow-1"
        assert payload["windowTime"] == 30
        node_input = payload["nodes"][0]["inputs"][0]
        assert node_input["filterType"] == "deviceId"
        assert node_input["topicName"] == "device-events"
        assert "persistData" not in payload["nodes"][0]


class TestOtherModels:
    """Tests for serving, workload and status models."""

    def test_serving_instance_aliases(self) -> None:
        """Test parsing the serving registry's PascalCase fields."""
        serving = ServingInstance.model_validate(
            {
                "ID": "s-1",
                "Measurement": "temperature",
                "Database": "db1",
                "Values": [{"Name": "value", "Type": "float", "Path": "value", "Tag": False}],
                "Unknown": "ignored",
            }
        )
        assert serving.id == "s-1"
        assert serving.measurement == "temperature"
        assert serving.values[0].name == "value"

    def test_workload_requires_name(self) -> None:
        """Test that workloads are keyed by name."""
        with pytest.raises(ValidationError):
            Workload.model_validate({"id": "w-1"})

    def test_delete_status_snapshot_is_independent(self) -> None:
        """Test that a snapshot does not share the error list."""
        status = DeleteStatus(total=2, remaining=2, running=True)
        snapshot = status.snapshot()
        status.errors.append("boom")

        assert snapshot.errors == []
        assert snapshot.to_dict() == {"total": 2, "remaining": 2, "running": True, "errors": []}
