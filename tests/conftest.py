from __future__ import annotations

from io import StringIO
from unittest.mock import MagicMock

import boto3
import pytest

from infra_timing.config import Clients, TimingConfig
from infra_timing.log import ConsoleLogger

CLUSTER_ARN = "arn:aws:ecs:us-east-1:123456789012:cluster/BootTimeMeasure"
TASK_DEFINITION_ARN = "arn:aws:ecs:us-east-1:123456789012:task-definition/BootTimeMeasure:1"
TASK_ARN = "arn:aws:ecs:us-east-1:123456789012:task/BootTimeMeasure/0123456789abcdef"
INSTANCE_ID = "i-0123456789abcdef0"


class ScriptedClock:
    """Returns the given timestamps in order."""

    def __init__(self, *stamps: float) -> None:
        self.stamps = list(stamps)

    def __call__(self) -> float:
        return self.stamps.pop(0)


def real_client(service: str):
    return boto3.client(
        service,
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def log_stream() -> StringIO:
    return StringIO()


@pytest.fixture
def sleeps() -> list:
    return []


@pytest.fixture
def config(log_stream: StringIO, sleeps: list) -> TimingConfig:
    return TimingConfig(
        logger=ConsoleLogger(verbose=True, stream=log_stream),
        sleep=sleeps.append,
        subnet_id="subnet-0abc",
    )


@pytest.fixture
def ec2_client() -> MagicMock:
    ec2 = MagicMock()
    ec2.run_instances.return_value = {"Instances": [{"InstanceId": INSTANCE_ID}]}
    return ec2


@pytest.fixture
def ecs_client() -> MagicMock:
    ecs = MagicMock()
    ecs.describe_clusters.return_value = {
        "clusters": [{"clusterArn": CLUSTER_ARN, "status": "ACTIVE"}],
        "failures": [],
    }
    ecs.describe_task_definition.return_value = {
        "taskDefinition": {"taskDefinitionArn": TASK_DEFINITION_ARN, "status": "ACTIVE"}
    }
    ecs.run_task.return_value = {"tasks": [{"taskArn": TASK_ARN}], "failures": []}
    return ecs


@pytest.fixture
def clients(ec2_client: MagicMock, ecs_client: MagicMock) -> Clients:
    return Clients(ec2=ec2_client, ecs=ecs_client)
