"""
基础模型模块

定义所有模型共用的基础类和工具函数。
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Numeric
from sqlmodel import SQLModel

# 金额统一使用 NUMERIC(14, 2)，足以容纳印尼盾的大额订单
MONEY_PRECISION = 14
MONEY_SCALE = 2


def utc_now() -> datetime:
    """
    获取当前 UTC 时间

    Returns:
        当前 UTC 时区的日期时间对象
    """
    return datetime.now(timezone.utc)


def money_column(*, nullable: bool = False) -> Column:
    """创建金额列（每个字段必须使用独立的 Column 实例）"""
    return Column(Numeric(MONEY_PRECISION, MONEY_SCALE), nullable=nullable)


# 导出 SQLModel 供其他模块使用
__all__ = ["SQLModel", "utc_now", "money_column"]
