#!/usr/bin/env python3
"""
ECS Task 启动时间测试

测量从 run-task 返回到 Task RUNNING 的时间，比较:
- Launch Type: EC2 / FARGATE
- 扩容方式: Capacity Provider / 直接指定 Launch Type

测试依次执行（不并发），因为多次测试共享 Cluster 和 Capacity Provider，
其冷热状态会影响结果。使用 Capacity Provider 时，两次测试之间等待 15 分钟缩容。

使用方法:
    measure-task-running-time
    measure-task-running-time --launch-type FARGATE --no-capacity-provider -n 5
    measure-task-running-time --large-cpu        # 1 vCPU / 3GB Task，触发扩容
"""

import argparse
import enum
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional

from botocore.exceptions import ClientError

from .config import LAUNCH_TYPES, Clients, TimingConfig
from .log import ConsoleLogger
from .stats import calculate_stats, elapsed_ms, format_values


class TaskLaunchError(RuntimeError):
    """run-task 没有返回 Task"""


class ResourceLookupError(RuntimeError):
    """describe 返回了无法判断资源是否存在的失败"""


class LookupStatus(enum.Enum):
    FOUND = "found"
    ABSENT = "absent"


@dataclass(frozen=True)
class LookupResult:
    """describe 的结果: 资源存在 (带 ARN) 或确认不存在"""
    status: LookupStatus
    arn: Optional[str] = None
    reason: str = ""

    @classmethod
    def found(cls, arn: str) -> "LookupResult":
        return cls(LookupStatus.FOUND, arn=arn)

    @classmethod
    def absent(cls, reason: str = "") -> "LookupResult":
        return cls(LookupStatus.ABSENT, reason=reason)

    @property
    def exists(self) -> bool:
        return self.status is LookupStatus.FOUND


# ============================================================================
# 网络
# ============================================================================

def describe_default_subnet_id(ec2) -> str:
    """默认 VPC 的第一个子网"""
    vpcs = ec2.describe_vpcs(Filters=[{"Name": "is-default", "Values": ["true"]}])
    if not vpcs.get("Vpcs"):
        raise ResourceLookupError("default VPC not found")
    vpc_id = vpcs["Vpcs"][0]["VpcId"]

    subnets = ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])
    if not subnets.get("Subnets"):
        raise ResourceLookupError(f"no subnet in default VPC {vpc_id}")
    return subnets["Subnets"][0]["SubnetId"]


def resolve_subnet_id(config: TimingConfig, clients: Clients) -> str:
    if config.subnet_id:
        return config.subnet_id
    return describe_default_subnet_id(clients.ec2)


# ============================================================================
# Cluster / Task Definition
# ============================================================================

def lookup_cluster(ecs, name: str) -> LookupResult:
    response = ecs.describe_clusters(clusters=[name])

    clusters = response.get("clusters", [])
    if clusters:
        cluster = clusters[0]
        if cluster.get("status") == "ACTIVE":
            return LookupResult.found(cluster["clusterArn"])
        return LookupResult.absent(f"cluster {name} is {cluster.get('status')}")

    for failure in response.get("failures", []):
        if failure.get("reason") != "MISSING":
            raise ResourceLookupError(f"describe cluster {name}: {failure.get('reason')}")

    return LookupResult.absent(f"cluster {name} is MISSING")


def lookup_task_definition(ecs, family: str) -> LookupResult:
    try:
        response = ecs.describe_task_definition(taskDefinition=family)
    except ClientError as e:
        # 未知的 family 返回 ClientException，其他错误（权限、限流）直接抛出
        if e.response.get("Error", {}).get("Code") == "ClientException":
            return LookupResult.absent(str(e))
        raise

    task_definition = response["taskDefinition"]
    if task_definition.get("status") == "INACTIVE":
        return LookupResult.absent(f"task definition {family} is INACTIVE")
    return LookupResult.found(task_definition["taskDefinitionArn"])


def describe_or_create_cluster(config: TimingConfig, clients: Clients) -> str:
    ecs = clients.ecs
    logger = config.logger

    lookup = lookup_cluster(ecs, config.cluster_name)
    if lookup.exists:
        logger.info("Cluster already exists")
        return lookup.arn

    logger.debug(lookup.reason)
    response = ecs.create_cluster(
        clusterName=config.cluster_name,
        tags=[{"key": "Name", "value": config.cluster_name}],
    )
    logger.info("Cluster Created")
    return response["cluster"]["clusterArn"]


def describe_or_register_task_definition(config: TimingConfig, clients: Clients) -> str:
    ecs = clients.ecs
    logger = config.logger
    family = config.task_definition_family

    lookup = lookup_task_definition(ecs, family)
    if lookup.exists:
        logger.info("Task Definition already exists")
        return lookup.arn

    logger.debug(lookup.reason)
    cpu, memory = config.task_cpu_memory
    response = ecs.register_task_definition(
        family=family,
        requiresCompatibilities=["FARGATE", "EC2"],
        containerDefinitions=[
            {
                "name": config.task_family,
                "image": config.container_image,
            }
        ],
        networkMode="awsvpc",
        cpu=cpu,
        memory=memory,
    )
    logger.info("Task Definition Registered")
    return response["taskDefinition"]["taskDefinitionArn"]


def delete_cluster(ecs, cluster_arn: str, logger: ConsoleLogger):
    ecs.delete_cluster(cluster=cluster_arn)
    logger.info("Cluster Deleted")


def delete_task_definition(ecs, task_definition_arn: str, logger: ConsoleLogger):
    # 只有 INACTIVE 的 revision 可以删除
    ecs.deregister_task_definition(taskDefinition=task_definition_arn)
    ecs.delete_task_definitions(taskDefinitions=[task_definition_arn])
    logger.info("Task Definition Deleted")


# ============================================================================
# Task
# ============================================================================

def build_run_task_request(
    launch_type: str,
    use_capacity_provider: bool,
    cluster_arn: str,
    task_definition_arn: str,
    subnet_id: str,
    config: TimingConfig,
) -> dict:
    """Capacity Provider 模式不带 launchType；否则必须带 launchType"""
    if launch_type not in LAUNCH_TYPES:
        raise ValueError(f"unsupported launch type: {launch_type}")

    request = {
        "taskDefinition": task_definition_arn,
        "cluster": cluster_arn,
        "networkConfiguration": {
            "awsvpcConfiguration": {
                "subnets": [subnet_id],
                "assignPublicIp": "ENABLED" if launch_type == "FARGATE" else "DISABLED",
            }
        },
        "tags": [{"key": "Name", "value": config.task_family}],
    }

    if use_capacity_provider:
        request["capacityProviderStrategy"] = [{"capacityProvider": config.capacity_provider}]
    else:
        request["launchType"] = launch_type

    return request


def stop_task(ecs, cluster_arn: str, task_arn: str, logger: ConsoleLogger, label: str = "Task"):
    ecs.stop_task(cluster=cluster_arn, task=task_arn)
    logger.info(f"{label} Stopped")


@contextmanager
def running_task(request: dict, label: str, config: TimingConfig, clients: Clients):
    """
    提交 run-task 并在退出时停止 Task。

    yield (task_arn, created_at)，created_at 在 run-task 返回后立即记录。
    """
    ecs = clients.ecs
    logger = config.logger
    cluster_arn = request["cluster"]

    response = ecs.run_task(**request)
    created_at = config.clock()

    if not response.get("tasks"):
        failures = response.get("failures", [])
        reason = failures[0].get("reason", "Unknown") if failures else "Unknown"
        raise TaskLaunchError(f"{label} Task 启动失败 - {reason}")

    task_arn = response["tasks"][0]["taskArn"]
    logger.info(f"{label} Task Created")

    try:
        yield task_arn, created_at
    except BaseException:
        try:
            stop_task(ecs, cluster_arn, task_arn, logger, label=f"{label} Task")
        except Exception as e:
            logger.warning(f"无法停止 {task_arn}: {e}")
        raise

    stop_task(ecs, cluster_arn, task_arn, logger, label=f"{label} Task")


def measure_task_running_time(
    launch_type: str,
    use_capacity_provider: bool,
    config: TimingConfig,
    clients: Clients,
) -> float:
    """一次测试: run-task -> RUNNING 的毫秒数"""
    ecs = clients.ecs

    subnet_id = resolve_subnet_id(config, clients)
    cluster_arn = describe_or_create_cluster(config, clients)
    task_definition_arn = describe_or_register_task_definition(config, clients)

    request = build_run_task_request(
        launch_type, use_capacity_provider, cluster_arn, task_definition_arn, subnet_id, config
    )

    with running_task(request, launch_type, config, clients) as (task_arn, created_at):
        ecs.get_waiter("tasks_running").wait(
            cluster=cluster_arn, tasks=[task_arn], WaiterConfig=config.waiter_config()
        )
        running_at = config.clock()
        config.logger.info(f"{launch_type} Task Running")

    if config.cleanup_cluster:
        ecs.get_waiter("tasks_stopped").wait(
            cluster=cluster_arn, tasks=[task_arn], WaiterConfig=config.waiter_config()
        )
        delete_task_definition(ecs, task_definition_arn, config.logger)
        delete_cluster(ecs, cluster_arn, config.logger)

    return elapsed_ms(created_at, running_at)


def sequential_execute(
    n: int,
    launch_type: str,
    use_capacity_provider: bool,
    config: TimingConfig,
    clients: Clients,
) -> List[float]:
    """依次执行 n 次测试；Capacity Provider 模式下两次测试之间等待缩容"""
    if n < 1:
        raise ValueError("n must be >= 1")

    logger = config.logger
    running_times = []

    for i in range(n):
        logger.info(f"[Run {i + 1}/{n}]")
        running_time = measure_task_running_time(launch_type, use_capacity_provider, config, clients)
        logger.info(f"{launch_type} running time: {running_time:.0f} ms")
        running_times.append(running_time)

        is_last = i == n - 1
        if use_capacity_provider and (not is_last or config.cooldown_after_last):
            logger.info(f"Waiting {config.cooldown / 60:.0f} minutes for scale in")
            config.sleep(config.cooldown)

    return running_times


def report_running_times(running_times: List[float], launch_type: str, logger: ConsoleLogger) -> dict:
    stats = calculate_stats(running_times)

    logger.banner("Results")
    logger.info(f"Running {len(running_times)} times: [{format_values(running_times)}]")
    logger.success(f"Average {launch_type} running time: {stats['avg']:.0f} ms")
    logger.info(f"Min/Max: {stats['min']:.0f} ms / {stats['max']:.0f} ms")

    return stats


def main():
    parser = argparse.ArgumentParser(description="ECS Task 启动时间测试")
    parser.add_argument(
        "--launch-type", "-l",
        choices=LAUNCH_TYPES,
        default="EC2",
        help="Launch Type (默认: EC2)"
    )
    parser.add_argument(
        "--iterations", "-n", type=int, default=1, help="测试次数 (默认: 1)"
    )
    parser.add_argument(
        "--capacity-provider",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="使用 Capacity Provider 扩容 (默认: 开启)"
    )
    parser.add_argument(
        "--large-cpu", action="store_true", help="使用 1 vCPU / 3GB 的 Task Definition"
    )
    parser.add_argument("--subnet", help="子网 ID (默认: 默认 VPC 的第一个子网)")
    parser.add_argument(
        "--cleanup-cluster", action="store_true", help="每次测试后删除 Cluster 和 Task Definition"
    )
    parser.add_argument(
        "--cooldown-after-last", action="store_true", help="最后一次测试后也等待缩容"
    )
    parser.add_argument("--region", help="AWS 区域 (默认: boto3 默认区域)")
    parser.add_argument("--verbose", "-v", action="store_true", help="输出 debug 日志")

    args = parser.parse_args()

    logger = ConsoleLogger(verbose=args.verbose, color=sys.stdout.isatty())
    config = TimingConfig(
        region=args.region,
        large_cpu=args.large_cpu,
        subnet_id=args.subnet,
        cleanup_cluster=args.cleanup_cluster,
        cooldown_after_last=args.cooldown_after_last,
        logger=logger,
    )

    try:
        clients = Clients.create(config.region)
        logger.info(f"Measuring {args.launch_type} running time")
        running_times = sequential_execute(
            args.iterations, args.launch_type, args.capacity_provider, config, clients
        )
        report_running_times(running_times, args.launch_type, logger)
    except KeyboardInterrupt:
        print("\n\n测试中断", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
