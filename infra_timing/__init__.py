"""
EC2 / ECS 状态转换时间测量工具

- ec2_boot: EC2 冷启动、Stopped 启动、Hibernated 唤醒时间
- ecs_task: ECS Task 从 run-task 到 RUNNING 的时间
"""

__version__ = "0.1.0"
