"""统计工具"""

from typing import Sequence


def elapsed_ms(start: float, end: float) -> float:
    """两个时间戳之间的毫秒数，负值说明时间戳顺序有误"""
    delta = end - start
    if delta < 0:
        raise ValueError(f"negative duration: {start} -> {end}")
    return delta


def mean(values: Sequence[float]) -> float:
    """算术平均"""
    if not values:
        raise ValueError("mean of empty sequence")
    return sum(values) / len(values)


def calculate_stats(values: list) -> dict:
    """计算统计数据"""
    if not values:
        return {"avg": 0, "min": 0, "max": 0, "p50": 0, "p95": 0}

    sorted_values = sorted(values)
    n = len(sorted_values)

    return {
        "avg": mean(values),
        "min": min(values),
        "max": max(values),
        "p50": sorted_values[int(n * 0.5)],
        "p95": sorted_values[min(int(n * 0.95), n - 1)],
    }


def format_values(values: Sequence[float]) -> str:
    return ",".join(f"{v:.0f}" for v in values)
