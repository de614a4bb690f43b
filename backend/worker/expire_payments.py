"""
过期支付清理脚本

由外部定时任务（cron / k8s CronJob）调用，把已超过 expires_at 仍为 PENDING 的
支付记录标记为 EXPIRED，并同步订单资金状态。可重复执行。
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlmodel import Session

from app.core.db import engine
from app.services import payment_service

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("expire_payments")


def main() -> None:
    now = datetime.now(timezone.utc)
    with Session(engine) as session:
        expired = payment_service.expire_stale_payments(session=session, now=now)
    logger.info("expire payments done: now=%s expired=%s", now.isoformat(), expired)


if __name__ == "__main__":  # pragma: no cover
    main()
