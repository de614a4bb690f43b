"""
订单模型模块

定义订单及订单明细的数据库模型。

一个订单只属于一个买家和一个卖家；购物车里有多个卖家的商品时，
下单会按卖家拆成多个订单（见 app/services/order_service.py）。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Integer, String, Text
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import OrderPaymentStatus, OrderStatus

from .base import money_column, utc_now


class Order(SQLModel, table=True):
    """
    订单模型

    字段说明：
    - id: 主键
    - order_number: 对外展示的订单号（唯一，ORD- 开头，按创建时间排序）
    - buyer_id / seller_id: 买卖双方（创建后不可变）
    - subtotal / shipping_cost / tax_amount / total_amount: 金额，
      total_amount 在创建时按 subtotal + shipping_cost + tax_amount 计算，之后不再重算
    - status: 履约状态
    - payment_status: 资金状态（可以滞后于 status）
    - confirmed_at / shipped_at / delivered_at / cancelled_at / refunded_at:
      首次进入对应状态时写入，之后不再修改

    订单不会被物理删除。
    """
    __tablename__ = "orders"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_number: str = Field(
        sa_column=Column(String(32), unique=True, index=True, nullable=False)
    )
    buyer_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("users.id"), index=True, nullable=False)
    )
    seller_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("users.id"), index=True, nullable=False)
    )

    subtotal: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    shipping_cost: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    tax_amount: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    total_amount: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    currency: str = Field(default="IDR", max_length=8)

    status: OrderStatus = Field(
        default=OrderStatus.pending,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    payment_status: OrderPaymentStatus = Field(
        default=OrderPaymentStatus.pending,
        sa_column=Column(String(16), index=True, nullable=False),
    )

    shipping_address: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    shipping_method: str | None = Field(default=None, max_length=64)
    payment_method: str | None = Field(default=None, max_length=32)
    tracking_number: str | None = Field(default=None, max_length=128)
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    cancellation_reason: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )

    confirmed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    shipped_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    delivered_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    cancelled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    refunded_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class OrderItem(SQLModel, table=True):
    """
    订单明细模型

    下单时从商品复制标题、类型、单位和单价，形成不可变快照；
    之后商品改价或下架都不影响已生成的明细。
    """
    __tablename__ = "order_items"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    order_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    listing_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("listings.id"), index=True, nullable=False)
    )
    title: str = Field(max_length=255)
    waste_type: str = Field(default="other", max_length=50)
    unit: str = Field(default="kg", max_length=20)
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    unit_price: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    total_price: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
