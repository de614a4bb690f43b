"""
应用启动前检查脚本

在执行迁移和启动 API 之前，等待数据库就绪。
Docker Compose 启动时数据库容器可能还在初始化，这里通过重试避免启动失败。

Redis 只用于通知投递（尽力而为），不可用时只记录警告，不阻塞启动。
"""
import logging

import redis
from sqlalchemy import Engine
from sqlmodel import Session, select
from tenacity import (
    after_log,
    before_log,
    retry,
    stop_after_attempt,
    wait_fixed,
)

from app.core.db import engine
from app.core.redis import get_redis

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

max_tries = 60 * 5  # 最多等待 5 分钟
wait_seconds = 1


@retry(
    stop=stop_after_attempt(max_tries),
    wait=wait_fixed(wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARN),
)
def init(db_engine: Engine) -> None:
    """执行 select(1) 检查数据库连接，失败时由 tenacity 重试"""
    try:
        with Session(db_engine) as session:
            session.exec(select(1))
    except Exception as e:
        logger.error(e)
        raise e


def check_notification_stream() -> bool:
    """检查通知用的 Redis 是否可达（不重试）"""
    try:
        get_redis().ping()
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable, notifications will be dropped: {e}")
        return False
    return True


def main() -> None:
    logger.info("Initializing service")
    init(engine)
    check_notification_stream()
    logger.info("Service finished initializing")


if __name__ == "__main__":  # pragma: no cover
    main()
