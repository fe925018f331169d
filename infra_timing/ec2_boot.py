#!/usr/bin/env python3
"""
EC2 启动时间测试

测量指定实例类型的三种启动延迟:
- 冷启动: run-instances 返回 -> running
- Stopped -> running
- Hibernated -> running

多次测试并发执行，每次测试使用独立的实例，结束后终止实例。

使用方法:
    measure-ec2-boot-time
    measure-ec2-boot-time --instance-type t2.micro --iterations 5
"""

import argparse
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from typing import List, Optional

from .config import INSTANCE_TYPES, Clients, TimingConfig
from .log import ConsoleLogger
from .stats import calculate_stats, elapsed_ms, format_values


@dataclass(frozen=True)
class BootTimeResult:
    """单次测试结果（毫秒）"""
    boot_time: float
    from_stopped_to_running_time: float
    from_hibernated_to_running_time: float


def build_run_instances_request(instance_type: str, config: TimingConfig) -> dict:
    return {
        "ImageId": config.image_id,
        "InstanceType": instance_type,
        "MinCount": 1,
        "MaxCount": 1,
        "TagSpecifications": [
            {
                "ResourceType": "instance",
                "Tags": [{"Key": "Name", "Value": config.instance_name}],
            }
        ],
        "HibernationOptions": {"Configured": True},
        "BlockDeviceMappings": [
            {
                "DeviceName": "/dev/xvda",
                "Ebs": {
                    "DeleteOnTermination": True,
                    "VolumeSize": config.volume_size_gb,
                    "VolumeType": "gp3",
                    "Encrypted": True,
                },
            }
        ],
    }


def wait_for_instance_state(ec2, instance_id: str, waiter_name: str, config: TimingConfig):
    """阻塞直到实例进入目标状态 (instance_running / instance_stopped)"""
    waiter = ec2.get_waiter(waiter_name)
    waiter.wait(InstanceIds=[instance_id], WaiterConfig=config.waiter_config())


def terminate_instance(ec2, instance_id: str, logger: ConsoleLogger):
    """终止实例，不等待 terminated 状态"""
    ec2.terminate_instances(InstanceIds=[instance_id])
    logger.info(f"Instance Terminated: {instance_id}")


@contextmanager
def launched_instance(instance_type: str, config: TimingConfig, clients: Clients):
    """
    创建实例并在退出时终止。

    yield (instance_id, created_at)，created_at 在 run-instances 返回后立即记录。
    测试出错时也会尝试终止实例，终止失败只记录 error 日志，不覆盖原始错误。
    """
    ec2 = clients.ec2
    logger = config.logger

    response = ec2.run_instances(**build_run_instances_request(instance_type, config))
    created_at = config.clock()
    instance_id = response["Instances"][0]["InstanceId"]
    logger.info(f"Instance Created: {instance_id} ({instance_type})")

    try:
        yield instance_id, created_at
    except BaseException:
        try:
            terminate_instance(ec2, instance_id, logger)
        except Exception as e:
            logger.error(f"无法终止实例 {instance_id}，需要手动清理: {e}")
        raise

    terminate_instance(ec2, instance_id, logger)


class TrialCancelled(RuntimeError):
    """测试被中断（Ctrl+C），实例会在退出时终止"""


def _check_cancelled(cancel: Optional[threading.Event], instance_id: str):
    if cancel is not None and cancel.is_set():
        raise TrialCancelled(f"trial on {instance_id} cancelled")


def measure_boot_time(
    instance_type: str,
    config: TimingConfig,
    clients: Clients,
    cancel: Optional[threading.Event] = None,
) -> BootTimeResult:
    """
    执行一次完整的 create -> stop -> start -> hibernate -> start -> terminate 流程

    cancel 被设置后，在下一个步骤之前抛出 TrialCancelled（正在进行的 waiter 不会被打断）。
    """
    if instance_type not in INSTANCE_TYPES:
        raise ValueError(f"unsupported instance type: {instance_type}")

    ec2 = clients.ec2
    logger = config.logger
    settle = config.settle_delay

    with launched_instance(instance_type, config, clients) as (instance_id, created_at):
        _check_cancelled(cancel, instance_id)
        wait_for_instance_state(ec2, instance_id, "instance_running", config)
        running_at = config.clock()
        logger.info(f"Instance running, waiting {settle:.0f} seconds before stopping")
        config.sleep(settle)

        _check_cancelled(cancel, instance_id)
        ec2.stop_instances(InstanceIds=[instance_id])
        wait_for_instance_state(ec2, instance_id, "instance_stopped", config)
        stopped_at = config.clock()
        logger.info("Instance Stopped")

        _check_cancelled(cancel, instance_id)
        ec2.start_instances(InstanceIds=[instance_id])
        wait_for_instance_state(ec2, instance_id, "instance_running", config)
        running_from_stopped_at = config.clock()
        logger.info(f"Instance running from stopped, waiting {settle:.0f} seconds before hibernating")
        config.sleep(settle)

        _check_cancelled(cancel, instance_id)
        ec2.stop_instances(InstanceIds=[instance_id], Hibernate=True)
        wait_for_instance_state(ec2, instance_id, "instance_stopped", config)
        hibernated_at = config.clock()
        logger.info("Instance Hibernated")

        _check_cancelled(cancel, instance_id)
        ec2.start_instances(InstanceIds=[instance_id])
        wait_for_instance_state(ec2, instance_id, "instance_running", config)
        running_from_hibernated_at = config.clock()
        logger.info(f"Instance Running from Hibernated, waiting {settle:.0f} seconds before terminating")
        config.sleep(settle)

    return BootTimeResult(
        boot_time=elapsed_ms(created_at, running_at),
        from_stopped_to_running_time=elapsed_ms(stopped_at, running_from_stopped_at),
        from_hibernated_to_running_time=elapsed_ms(hibernated_at, running_from_hibernated_at),
    )


def run_boot_trials(
    n: int,
    instance_type: str,
    config: TimingConfig,
    clients: Clients,
    cancel: Optional[threading.Event] = None,
) -> List[BootTimeResult]:
    """
    并发执行 n 次测试，全部结束后按提交顺序返回结果；任一失败则抛出第一个错误

    主线程收到 KeyboardInterrupt 时设置 cancel，各测试在下一个步骤前中止并终止实例，
    全部线程退出后再抛出 KeyboardInterrupt。
    """
    if n < 1:
        raise ValueError("n must be >= 1")

    if cancel is None:
        cancel = threading.Event()

    with ThreadPoolExecutor(max_workers=n) as pool:
        futures = [
            pool.submit(measure_boot_time, instance_type, config, clients, cancel)
            for _ in range(n)
        ]
        try:
            wait(futures)
        except KeyboardInterrupt:
            config.logger.warning("测试中断，等待各测试终止实例...")
            cancel.set()
            raise

    return [f.result() for f in futures]


def report_boot_times(results: List[BootTimeResult], instance_type: str, logger: ConsoleLogger) -> dict:
    """打印每项指标的测量值和平均值"""
    columns = {
        "boot time": [r.boot_time for r in results],
        "fromStoppedToRunningTime": [r.from_stopped_to_running_time for r in results],
        "fromHibernatedToRunningTime": [r.from_hibernated_to_running_time for r in results],
    }

    logger.banner("Results")
    logger.info(f"Measured {len(results)} times for {instance_type}")

    summary = {}
    for name, values in columns.items():
        stats = calculate_stats(values)
        summary[name] = stats
        logger.success(
            f"{name}: [{format_values(values)}] average: {stats['avg']:.0f} ms "
            f"(min {stats['min']:.0f} ms, max {stats['max']:.0f} ms)"
        )

    return summary


def main():
    parser = argparse.ArgumentParser(description="EC2 启动时间测试")
    parser.add_argument(
        "--instance-type", "-t",
        choices=INSTANCE_TYPES,
        default="t2.2xlarge",
        help="实例类型 (默认: t2.2xlarge)"
    )
    parser.add_argument(
        "--iterations", "-n", type=int, default=3, help="并发测试次数 (默认: 3)"
    )
    parser.add_argument("--region", help="AWS 区域 (默认: boto3 默认区域)")
    parser.add_argument("--verbose", "-v", action="store_true", help="输出 debug 日志")

    args = parser.parse_args()

    logger = ConsoleLogger(verbose=args.verbose, color=sys.stdout.isatty())
    config = TimingConfig(region=args.region, logger=logger)

    try:
        clients = Clients.create(config.region)
        logger.info("Measuring ec2 boot time")
        results = run_boot_trials(args.iterations, args.instance_type, config, clients)
        report_boot_times(results, args.instance_type, logger)
    except KeyboardInterrupt:
        print("\n\n测试中断", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
