"""
工具路由模块

提供系统工具类的 API 端点，如健康检查等。
"""
import logging

from fastapi import APIRouter, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from app.api.deps import SessionDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
def health_check(session: SessionDep) -> bool:
    """
    健康检查端点

    检查数据库连接是否可用，返回 True 表示服务正常。

    请求路径: GET /api/v1/utils/health-check/

    使用场景：
    - 负载均衡器健康检查
    - 容器编排系统（如 Kubernetes）的存活探针
    """
    try:
        session.exec(select(1))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Database unavailable")
    return True
