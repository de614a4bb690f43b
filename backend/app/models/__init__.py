"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- user.py: 用户模型（账号服务维护，只读）
- listing.py: 商品与购物车模型（商品服务维护）
- order.py: 订单与订单明细模型
- payment.py: 支付与退款模型
"""
from sqlmodel import SQLModel

from .base import utc_now
from .listing import CartItem, Listing
from .order import Order, OrderItem
from .payment import Payment, Refund
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "User",
    "Listing",
    "CartItem",
    "Order",
    "OrderItem",
    "Payment",
    "Refund",
]
