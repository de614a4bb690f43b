"""
Snowflake ID 生成器模块

生成分布式唯一、按时间递增的 64 位 ID，用作各业务表的主键，
同时也是订单号的来源（订单号是 Snowflake ID 的定长 36 进制编码，
因此天然按创建时间排序）。

ID 结构（64 位）：
- 41 位：时间戳（毫秒，从自定义起始时间开始）
- 10 位：节点 ID（0-1023，每个服务实例不同）
- 12 位：序列号（同一毫秒内的序号，0-4095）
"""
from __future__ import annotations

import string  # 36 进制字符表
import threading  # 线程锁，用于并发安全
import time  # 时间处理

from app.core.config import settings

# 自定义起始时间（2024-01-01T00:00:00Z）的毫秒时间戳
_EPOCH_MS = 1704067200000

# 36 进制字符表（0-9A-Z），大写保证字典序与数值序一致
_BASE36_ALPHABET = string.digits + string.ascii_uppercase

# 63 位正整数的 36 进制最多 13 位，补齐到定长保证字典序可比较
_ORDER_NUMBER_WIDTH = 13
_ORDER_NUMBER_PREFIX = "ORD-"


class Snowflake:
    """
    64 位 Snowflake ID 生成器

    每个节点每毫秒最多生成 4096 个 ID。
    """

    def __init__(self, *, node_id: int) -> None:
        """
        Args:
            node_id: 节点 ID（0-1023），每个服务实例必须不同

        Raises:
            ValueError: 当节点 ID 不在有效范围内时
        """
        if not (0 <= node_id <= 1023):
            raise ValueError("SNOWFLAKE_NODE_ID must be in [0, 1023]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    def next_id(self) -> int:
        """
        生成下一个唯一 ID（线程安全）

        时钟回拨不超过 5 秒时等待时间追上；超过 5 秒直接报错，避免生成重复 ID。

        Raises:
            RuntimeError: 当时钟回拨超过 5 秒时
        """
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                diff = self._last_ts - ts
                if diff > 5000:
                    raise RuntimeError(
                        f"Clock moved backwards by {diff}ms. "
                        "Refusing to generate IDs to prevent duplicates."
                    )
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & 0xFFF
                if self._seq == 0:
                    # 序列号溢出，等待下一毫秒
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << 22) | (self._node_id << 12) | self._seq

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        """忙等直到当前时间 >= target_ms，返回当前时间戳"""
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts


# 全局生成器实例（单例模式）
_GENERATOR: Snowflake | None = None


def _get_generator() -> Snowflake:
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR


def generate_id() -> int:
    """生成唯一 ID（便捷函数）"""
    return _get_generator().next_id()


def to_base36(value: int, *, width: int = 0) -> str:
    """
    将非负整数编码为大写 36 进制字符串，并左侧补零到指定宽度

    Raises:
        ValueError: 当 value 为负数时
    """
    if value < 0:
        raise ValueError("value must be non-negative")
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[rem])
    encoded = "".join(reversed(digits)) or "0"
    return encoded.rjust(width, "0")


def generate_order_number(order_id: int | None = None) -> str:
    """
    生成订单号

    格式：ORD-<13 位 36 进制>，例如 ORD-000C9X7QK2F0W。
    由 Snowflake ID 编码而来，因此全局唯一且按创建时间排序。

    Args:
        order_id: 订单主键；为空时单独生成一个新的 Snowflake ID

    Returns:
        订单号字符串
    """
    source = order_id if order_id is not None else generate_id()
    return f"{_ORDER_NUMBER_PREFIX}{to_base36(source, width=_ORDER_NUMBER_WIDTH)}"
