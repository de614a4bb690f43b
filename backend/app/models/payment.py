"""
支付与退款模型模块

Payment 记录一次通过某个渠道收取订单全款的尝试；
Refund 记录针对一笔已支付 Payment 的退款申请。

两张表的主键使用 UUID 字符串，与网关无关，可以直接作为对外引用。
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlmodel import Field, SQLModel

from app.enums import PaymentChannel, PaymentStatus, RefundStatus

from .base import money_column, utc_now


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Payment(SQLModel, table=True):
    """
    支付记录模型

    字段说明：
    - external_id: 发给网关的我方引用号
    - gateway_invoice_id: 网关返回的关联 ID（唯一，回调按它查找）
    - gateway_payment_id: 网关的次级关联 ID（部分渠道回调只带这个）
    - status: PENDING / PAID / SETTLED / EXPIRED / FAILED
    - channel + bank_code / ewallet_type / retail_outlet_name: 渠道及其参数
    - virtual_account_number / qr_string / payment_url / retail_payment_code:
      展示给买家的付款信息，每个渠道只填其中一组
    - gateway_response: 网关原始报文（包括最近一次回调）

    约束：
    - 每个订单最多一条 PENDING 记录（部分唯一索引 uq_payments_order_pending）
    """
    __tablename__ = "payments"
    __table_args__ = (
        Index(
            "uq_payments_order_pending",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
        Index("ix_payments_gateway_payment_id", "gateway_payment_id"),
    )

    id: str = Field(
        default_factory=_uuid_str,
        sa_column=Column(String(36), primary_key=True),
    )
    order_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("orders.id"), index=True, nullable=False)
    )
    buyer_id: int = Field(
        sa_column=Column(BigInteger, ForeignKey("users.id"), index=True, nullable=False)
    )
    external_id: str = Field(max_length=128)
    gateway_invoice_id: str = Field(
        sa_column=Column(String(128), unique=True, index=True, nullable=False)
    )
    gateway_payment_id: str | None = Field(
        default=None, sa_column=Column(String(128), nullable=True)
    )

    amount: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    currency: str = Field(default="IDR", max_length=8)
    status: PaymentStatus = Field(
        default=PaymentStatus.PENDING,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    channel: PaymentChannel = Field(sa_column=Column(String(32), nullable=False))
    bank_code: str | None = Field(default=None, max_length=32)
    ewallet_type: str | None = Field(default=None, max_length=32)
    retail_outlet_name: str | None = Field(default=None, max_length=32)

    virtual_account_number: str | None = Field(default=None, max_length=64)
    qr_string: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    payment_url: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    retail_payment_code: str | None = Field(default=None, max_length=64)

    customer_info: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    expires_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    paid_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    settled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    failure_code: str | None = Field(default=None, max_length=64)
    failure_message: str | None = Field(
        default=None, sa_column=Column(Text, nullable=True)
    )
    gateway_response: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class Refund(SQLModel, table=True):
    """
    退款记录模型

    不变量：同一 Payment 下所有 COMPLETED 退款金额之和不超过 payment.amount。
    """
    __tablename__ = "refunds"
    id: str = Field(
        default_factory=_uuid_str,
        sa_column=Column(String(36), primary_key=True),
    )
    payment_id: str = Field(
        sa_column=Column(
            String(36),
            ForeignKey("payments.id", ondelete="CASCADE"),
            index=True,
            nullable=False,
        )
    )
    amount: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    currency: str = Field(default="IDR", max_length=8)
    reason: str = Field(max_length=255)
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    status: RefundStatus = Field(
        default=RefundStatus.PENDING,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    gateway_refund_id: str | None = Field(
        default=None, sa_column=Column(String(128), unique=True, nullable=True)
    )
    failure_code: str | None = Field(default=None, max_length=64)
    processed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    gateway_response: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
