"""
Redis 连接模块

管理 Redis 客户端连接，使用单例模式确保全局只有一个连接实例。
本服务用 Redis Streams 向通知服务投递订单/支付事件。
"""
from __future__ import annotations

from functools import lru_cache  # 缓存装饰器，用于实现单例模式

import redis  # Redis 客户端库

from app.core.config import settings


@lru_cache(maxsize=1)
def get_redis() -> redis.Redis:
    """
    获取 Redis 客户端实例（单例模式）

    创建实例时不会立即连接，第一次执行命令时才建立连接。
    """
    return redis.Redis(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        decode_responses=True,  # 自动解码响应为字符串（而不是字节）
        socket_timeout=2,  # 通知投递不应拖慢主流程
    )
