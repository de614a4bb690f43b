"""
令牌工具模块

身份认证由独立的账号服务负责，本服务只校验其签发的 JWT。
这里保留签发函数，供内部调用方和测试生成令牌。
"""
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from app.core.config import settings

ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> dict[str, Any]:
    """
    解码并校验 JWT

    Raises:
        jwt.exceptions.InvalidTokenError: 签名错误、过期或格式错误时
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
