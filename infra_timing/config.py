"""
测量配置与 AWS 客户端

所有 Pipeline 函数接收同一个 TimingConfig 和 Clients，
进程启动时构造一次，不使用模块级全局客户端。
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import boto3

from .log import ConsoleLogger

# ============================================================================
# 固定标识
# ============================================================================

IMAGE_ID = "ami-0e05f79e46019bfac"  # Amazon Linux 2023 AMI
RESOURCE_NAME = "BootTimeMeasure"

INSTANCE_TYPES = ("t2.micro", "t2.medium", "t2.large", "t2.xlarge", "t2.2xlarge")
LAUNCH_TYPES = ("EC2", "FARGATE")

CLUSTER = RESOURCE_NAME
CAPACITY_PROVIDER = RESOURCE_NAME
TASK_FAMILY = RESOURCE_NAME
# 1 vCPU / 3GB 的 Task，用于触发 Capacity Provider 扩容
TASK_FAMILY_LARGE_CPU = "BootTimeMeasureLargeCPU"

DOCKER_USER_NAME = "<username>"
CONTAINER_IMAGE = f"{DOCKER_USER_NAME}/almost:1gb"


def monotonic_ms() -> float:
    """单调时钟（毫秒），差值不受系统时间调整影响"""
    return time.monotonic() * 1000


@dataclass
class TimingConfig:
    """测量配置"""
    region: Optional[str] = None     # None 时使用 boto3 默认区域

    # EC2
    image_id: str = IMAGE_ID
    instance_name: str = RESOURCE_NAME
    volume_size_gb: int = 35

    # ECS
    cluster_name: str = CLUSTER
    task_family: str = TASK_FAMILY
    large_cpu: bool = False
    capacity_provider: str = CAPACITY_PROVIDER
    container_image: str = CONTAINER_IMAGE
    subnet_id: Optional[str] = None   # None 时使用默认 VPC 的第一个子网

    # 等待与节奏（秒）
    waiter_delay: int = 1
    waiter_max_wait: int = 600
    settle_delay: float = 10.0
    cooldown: float = 15 * 60.0
    cooldown_after_last: bool = False

    # 测试结束后是否删除 Cluster 和 Task Definition
    cleanup_cluster: bool = False

    logger: ConsoleLogger = field(default_factory=ConsoleLogger)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = monotonic_ms

    @property
    def task_definition_family(self) -> str:
        if self.large_cpu:
            return TASK_FAMILY_LARGE_CPU
        return self.task_family

    @property
    def task_cpu_memory(self) -> tuple:
        if self.large_cpu:
            return "1024", "3072"
        return "256", "512"

    def waiter_config(self) -> dict:
        """boto3 WaiterConfig: 每 waiter_delay 秒轮询一次，最多 waiter_max_wait 秒"""
        delay = max(self.waiter_delay, 1)
        return {
            "Delay": delay,
            "MaxAttempts": max(self.waiter_max_wait // delay, 1),
        }


@dataclass
class Clients:
    """EC2 / ECS 客户端（boto3 低级客户端线程安全，可在多个 Trial 间共享）"""
    ec2: object
    ecs: object

    @classmethod
    def create(cls, region: Optional[str] = None) -> "Clients":
        if region:
            return cls(
                ec2=boto3.client("ec2", region_name=region),
                ecs=boto3.client("ecs", region_name=region),
            )
        return cls(ec2=boto3.client("ec2"), ecs=boto3.client("ecs"))
