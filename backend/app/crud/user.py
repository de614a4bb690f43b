"""用户 CRUD 操作"""
from sqlmodel import Session

from app.enums import UserRole
from app.models import User


def create(
    *,
    session: Session,
    email: str,
    full_name: str | None = None,
    role: UserRole = UserRole.user,
) -> User:
    """创建用户（用户由账号服务维护，这里只用于初始化数据和测试）"""
    user = User(email=email, full_name=full_name, role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user
