"""
通知投递

订单和支付事件通过 Redis Streams 投递给通知服务（推送、站内信由它负责）。
投递是尽力而为的：失败只记录日志，不影响已提交的业务事务。
"""
import json
import logging
from typing import Any

import redis

from app.core.config import settings
from app.core.redis import get_redis

logger = logging.getLogger(__name__)

# 事件类型
ORDER_CREATED = "order_created"
ORDER_STATUS_UPDATED = "order_status_updated"
ORDER_CANCELLED = "order_cancelled"
PAYMENT_CREATED = "payment_created"
PAYMENT_SUCCEEDED = "payment_succeeded"
PAYMENT_FAILED = "payment_failed"
REFUND_CREATED = "refund_created"


def notify(event: str, user_id: int, payload: dict[str, Any]) -> bool:
    """
    投递一条通知事件

    Args:
        event: 事件类型
        user_id: 接收通知的用户 ID
        payload: 事件内容（会被 JSON 序列化）

    Returns:
        是否投递成功
    """
    try:
        rds = get_redis()
        rds.xadd(
            settings.NOTIFICATION_STREAM,
            {
                "event": event,
                "user_id": str(user_id),
                "payload": json.dumps(payload, default=str),
            },
        )
    except redis.RedisError as e:
        logger.warning(f"Failed to dispatch notification {event} to user {user_id}: {e}")
        return False
    return True
