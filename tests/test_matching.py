"""Tests for the name matching predicates."""

import json

from cleanup.matching import (
    extract_pipeline_id,
    is_internal_analytics_topic,
    measurement_in_servings,
    pipe_in_workloads,
    pipeline_exists,
    serving_in_workloads,
    serving_value_fields,
    service_in_workloads,
    workload_in_pipes,
    workload_in_servings,
)
from cleanup.models import KubeService, Pipeline, ServingInstance, ServingInstanceValue, Workload

PIPE_ID = "0c5b5f5e-2a6c-4e5f-9a3b-1d2e3f4a5b6c"
OTHER_ID = "7d8e9f0a-1b2c-4d3e-8f5a-6b7c8d9e0f1a"


def _workloads(*names: str) -> list[Workload]:
    return [Workload(name=name) for name in names]


class TestPipelineWorkloadMatching:
    """Tests for matching pipelines against workloads by embedded id."""

    def test_pipe_in_workloads_by_substring(self) -> None:
        """Test that a workload whose name contains the id matches."""
        pipe = Pipeline(id=PIPE_ID)
        assert pipe_in_workloads(pipe, _workloads("other", f"analytics-{PIPE_ID}-op-1"))

    def test_pipe_not_in_workloads(self) -> None:
        """Test that no match is found for an unrelated workload set."""
        pipe = Pipeline(id=PIPE_ID)
        assert not pipe_in_workloads(pipe, _workloads(f"analytics-{OTHER_ID}-op-1"))
        assert not pipe_in_workloads(pipe, [])

    def test_workload_in_pipes(self) -> None:
        """Test the inverse predicate."""
        pipes = [Pipeline(id=OTHER_ID), Pipeline(id=PIPE_ID)]
        assert workload_in_pipes(Workload(name=f"analytics-{PIPE_ID}-op-1"), pipes)
        assert not workload_in_pipes(Workload(name="analytics-unrelated"), pipes)


class TestServingMatching:
    """Tests for serving instance matching."""

    def test_serving_in_workloads(self) -> None:
        """Test that serving workloads embed the instance id."""
        serving = ServingInstance(id="s-1")
        assert serving_in_workloads(serving, _workloads("kafka2influx-s-1"))
        assert not serving_in_workloads(serving, _workloads("kafka2influx-s-2"))

    def test_workload_in_servings(self) -> None:
        """Test the inverse serving predicate."""
        servings = [ServingInstance(id="s-1")]
        assert workload_in_servings(Workload(name="kafka-influx-s-1"), servings)
        assert not workload_in_servings(Workload(name="kafka-influx-s-9"), servings)

    def test_measurement_in_servings(self) -> None:
        """Test that measurements match by exact name."""
        servings = [ServingInstance(id="s-1", measurement="temperature")]
        assert measurement_in_servings("temperature", servings)
        assert not measurement_in_servings("temp", servings)

    def test_serving_value_fields(self) -> None:
        """Test that values are split into data and tag mappings."""
        values = [
            ServingInstanceValue(name="value", type="float", path="value.reading"),
            ServingInstanceValue(name="device", type="string", path="device_id", tag=True),
        ]
        data_fields, tag_fields = serving_value_fields(values)

        assert json.loads(data_fields) == {"value:float": "value.reading"}
        assert json.loads(tag_fields) == {"device:string": "device_id"}


class TestServiceInWorkloads:
    """Tests for kube service target resolution."""

    def test_target_workload_exists(self) -> None:
        """Test that the third segment of the first target is the workload name."""
        service = KubeService(id="svc", target_workload_ids=["deployment:ns:adder"])
        assert service_in_workloads(service, _workloads("adder"))

    def test_target_workload_missing(self) -> None:
        """Test that a target naming no workload is not found."""
        service = KubeService(id="svc", target_workload_ids=["deployment:ns:adder"])
        assert not service_in_workloads(service, _workloads("multiplier"))

    def test_short_target_counts_as_missing(self) -> None:
        """Test that a target with fewer than three segments cannot be resolved."""
        service = KubeService(id="svc", target_workload_ids=["deployment:adder"])
        assert not service_in_workloads(service, _workloads("adder", "deployment:adder"))

    def test_no_targets_counts_as_missing(self) -> None:
        """Test that a service without targets is not found."""
        service = KubeService(id="svc")
        assert not service_in_workloads(service, _workloads("adder"))

    def test_only_first_target_inspected(self) -> None:
        """Test that later targets are ignored."""
        service = KubeService(
            id="svc", target_workload_ids=["deployment:ns:gone", "deployment:ns:adder"]
        )
        assert not service_in_workloads(service, _workloads("adder"))


class TestKafkaTopicMatching:
    """Tests for internal topic recognition and pipeline lookup."""

    def test_internal_topics(self) -> None:
        """Test that repartition and changelog topics are internal."""
        assert is_internal_analytics_topic(f"analytics-{PIPE_ID}-adder-store-repartition")
        assert is_internal_analytics_topic(f"analytics-{PIPE_ID}-adder-store-changelog")

    def test_non_internal_topics(self) -> None:
        """Test that ordinary and non-analytics topics are ignored."""
        assert not is_internal_analytics_topic(f"analytics-{PIPE_ID}-output")
        assert not is_internal_analytics_topic("device-events-repartition")
        assert not is_internal_analytics_topic("analytics-not-a-uuid-repartition")

    def test_extract_pipeline_id(self) -> None:
        """Test that the bare uuid is extracted."""
        assert extract_pipeline_id(f"analytics-{PIPE_ID}-adder-repartition") == PIPE_ID
        assert extract_pipeline_id("device-events") == ""

    def test_pipeline_exists_with_bare_uuid(self) -> None:
        """Test an application id starting with the bare uuid."""
        topic = f"analytics-{PIPE_ID}-foo-repartition"
        envs = [{"OTHER": "x"}, {"CONFIG_APPLICATION_ID": f"{PIPE_ID}-op-1"}]
        assert pipeline_exists(topic, envs)

    def test_pipeline_exists_with_prefixed_uuid(self) -> None:
        """Test an application id starting with analytics-<uuid>."""
        topic = f"analytics-{PIPE_ID}-foo-repartition"
        envs = [{"CONFIG_APPLICATION_ID": f"analytics-{PIPE_ID}-op-1"}]
        assert pipeline_exists(topic, envs)

    def test_pipeline_missing(self) -> None:
        """Test that other pipelines and missing application ids do not match."""
        topic = f"analytics-{PIPE_ID}-foo-repartition"
        envs = [{"CONFIG_APPLICATION_ID": f"analytics-{OTHER_ID}"}, {}]
        assert not pipeline_exists(topic, envs)
        assert not pipeline_exists(topic, [])
