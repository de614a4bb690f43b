"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中。
FastAPI 的依赖注入系统会自动处理这些依赖的创建和注入。

关键概念：
- Depends: FastAPI 的依赖注入装饰器
- Generator: 用于创建需要清理的资源（如数据库会话）
- HTTPBearer: 从 Authorization: Bearer <token> 请求头提取 token
"""
from collections.abc import Generator  # 生成器类型，用于资源管理
from typing import Annotated  # 类型注解，用于依赖注入

from fastapi import Depends, HTTPException, status  # FastAPI 核心功能
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer  # Bearer 方案
from jwt.exceptions import InvalidTokenError  # JWT 无效异常
from pydantic import ValidationError  # Pydantic 验证异常
from sqlmodel import Session  # 数据库会话

from app.api.schemas import TokenPayload
from app.core import security
from app.core.db import engine
from app.integrations.xendit import PaymentGateway, get_payment_gateway
from app.models import User

# Bearer 认证配置
# 令牌由账号服务签发，这里只校验签名和有效期
reusable_oauth2 = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    这是一个生成器函数，使用 yield 确保会话在使用后自动关闭。
    FastAPI 会在请求处理完成后自动调用生成器的清理逻辑。

    Yields:
        Session: 数据库会话对象
    """
    with Session(engine) as session:
        yield session  # yield 确保会话在请求结束后自动关闭


# 类型别名，简化依赖注入的写法
SessionDep = Annotated[Session, Depends(get_db)]  # 数据库会话依赖
TokenDep = Annotated[
    HTTPAuthorizationCredentials, Depends(reusable_oauth2)
]  # JWT token 依赖
GatewayDep = Annotated[PaymentGateway, Depends(get_payment_gateway)]  # 支付网关依赖


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )


def get_current_user(
    session: SessionDep, token: TokenDep
) -> User:
    """
    获取当前登录用户（依赖注入）

    从 JWT token 中解析用户 ID，并查询数据库获取完整用户对象。

    Raises:
        HTTPException: token 无效或用户不存在时返回 401，用户已停用时返回 403
    """
    try:
        payload = security.decode_access_token(token.credentials)
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        # token 格式错误或验证失败
        raise _credentials_error()
    if not token_data.sub:
        raise _credentials_error()
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise _credentials_error()

    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return user


# 类型别名，简化需要认证的路由写法
CurrentUser = Annotated[User, Depends(get_current_user)]
