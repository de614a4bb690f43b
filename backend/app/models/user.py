"""
用户模型模块

用户由账号服务维护，本服务只读取身份信息（角色、是否启用）。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import UserRole

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键，使用 Snowflake 算法生成的分布式唯一 ID
    - email: 邮箱（唯一）
    - full_name: 姓名或企业联系人
    - role: 当前角色（user/recycler/business/admin）
    - is_active: 是否启用，停用用户不能调用任何接口
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    email: str = Field(
        sa_column=Column(String(255), unique=True, index=True, nullable=False),
    )
    full_name: str | None = Field(default=None, max_length=128)
    role: UserRole = Field(
        default=UserRole.user, sa_column=Column(String(16), nullable=False)
    )
    is_active: bool = Field(default=True)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
