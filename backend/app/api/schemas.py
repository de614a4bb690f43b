"""
API 请求/响应数据模型（Schema）

定义所有 API 接口的请求和响应数据结构。
使用 Pydantic 进行数据验证和序列化。

关键概念：
- BaseModel: Pydantic 的模型基类，用于数据验证
- Field: 字段验证器，定义字段的约束（长度、范围等）
- 这些模型不是数据库表，只用于 API 数据交换
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal  # 精确数值类型，用于金额
from typing import Any, Literal  # 任意类型

from pydantic import BaseModel, ConfigDict, Field  # Pydantic 核心类

from app.enums import (
    BankCode,  # 虚拟账户银行
    EwalletType,  # 电子钱包类型
    OrderPaymentStatus,  # 订单资金状态枚举
    OrderStatus,  # 订单状态枚举
    PaymentChannel,  # 支付渠道枚举
    PaymentStatus,  # 支付状态枚举
    RefundStatus,  # 退款状态枚举
    RetailOutlet,  # 便利店
)

# ============================================================
# 通用响应模型
# ============================================================


class Message(BaseModel):
    """
    消息响应模型

    用于 API 返回简单的文本消息。
    """
    message: str


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    用于解析 JWT token 中的用户信息。
    sub (subject) 存储用户 ID。
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    所有 API 响应都使用这个格式，包含：
    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息（成功时为 "success"，错误时为错误描述）
    - data: 数据（成功时返回业务数据，错误时为错误详情或 None）

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 400303, "message": "Insufficient quantity for PET Bottles", "data": {"error": "InsufficientStock", ...}}
    """
    code: int = 0  # 默认成功
    message: str = "success"  # 默认成功消息
    data: Any | None = None  # 业务数据（可选）


# ============================================================
# 订单
# ============================================================


class ShippingAddress(BaseModel):
    """收货地址"""
    recipient_name: str = Field(min_length=1, max_length=128)
    phone: str = Field(min_length=1, max_length=32)
    address: str = Field(min_length=1, max_length=512)
    city: str = Field(min_length=1, max_length=128)
    province: str | None = Field(default=None, max_length=128)
    postal_code: str | None = Field(default=None, max_length=16)


class OrderCreateRequest(BaseModel):
    """
    下单请求模型

    订单内容来自买家当前的购物车，这里只提交收货和备注信息。
    """
    shipping_address: ShippingAddress
    shipping_method: str | None = Field(default=None, max_length=64)
    payment_method: PaymentChannel | None = None  # 支付方式偏好（实际渠道在发起支付时确定）
    notes: str | None = Field(default=None, max_length=1000)


class OrderStatusUpdateRequest(BaseModel):
    status: OrderStatus
    notes: str | None = Field(default=None, max_length=1000)
    tracking_number: str | None = Field(default=None, max_length=128)


class OrderCancelRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)
    notes: str | None = Field(default=None, max_length=1000)


class OrderItemData(BaseModel):
    """订单明细（下单时的快照）"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    listing_id: int
    title: str
    waste_type: str
    unit: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderData(BaseModel):
    """
    订单数据模型

    返回订单的详细信息（包括明细）。
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    buyer_id: int
    seller_id: int
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
    status: OrderStatus
    payment_status: OrderPaymentStatus
    shipping_address: dict[str, Any] | None = None
    shipping_method: str | None = None
    payment_method: str | None = None
    tracking_number: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None
    confirmed_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    refunded_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemData] = []


class OrdersData(BaseModel):
    """
    订单列表响应模型

    返回订单列表、总数和分页信息。
    """
    data: list[OrderData]  # 订单列表
    count: int  # 总记录数
    page: int
    limit: int


class OrderStatsData(BaseModel):
    total_orders: int
    status_counts: dict[str, int]
    total_revenue: Decimal
    average_order_value: Decimal


# ============================================================
# 支付与退款
# ============================================================


class CustomerInfo(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=32)


class PaymentCreateRequest(BaseModel):
    """
    发起支付请求模型

    按渠道填写对应参数：
    - BANK_TRANSFER / VIRTUAL_ACCOUNT: bank_code
    - EWALLET: ewallet_type（可选 mobile_number）
    - RETAIL_OUTLET: retail_outlet_name
    - CREDIT_CARD: 无
    """
    order_id: int
    payment_method: PaymentChannel
    bank_code: BankCode | None = None
    ewallet_type: EwalletType | None = None
    retail_outlet_name: RetailOutlet | None = None
    mobile_number: str | None = Field(default=None, max_length=32)
    customer: CustomerInfo | None = None


class PaymentData(BaseModel):
    """支付记录数据模型"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: int
    buyer_id: int
    external_id: str
    gateway_invoice_id: str
    gateway_payment_id: str | None = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    channel: PaymentChannel
    bank_code: str | None = None
    ewallet_type: str | None = None
    retail_outlet_name: str | None = None
    virtual_account_number: str | None = None
    qr_string: str | None = None
    payment_url: str | None = None
    retail_payment_code: str | None = None
    expires_at: datetime | None = None
    paid_at: datetime | None = None
    settled_at: datetime | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    created_at: datetime
    updated_at: datetime


class PaymentDetailData(PaymentData):
    """支付详情（附带退款记录和可退金额）"""
    refundable_amount: Decimal
    refunds: list[RefundData] = []


class PaymentsData(BaseModel):
    data: list[PaymentData]
    count: int
    page: int
    limit: int


class PaymentStatsData(BaseModel):
    total_payments: int
    status_counts: dict[str, int]
    total_paid: Decimal


class PaymentMethodOption(BaseModel):
    code: str
    name: str
    fee: int = 0


class PaymentMethodData(BaseModel):
    code: str
    name: str
    description: str
    options: list[PaymentMethodOption] = []


class RefundCreateRequest(BaseModel):
    """
    退款请求模型

    amount 必须为正数，且不超过可退金额（支付金额 - 已完成退款）。
    """
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    reason: str = Field(min_length=1, max_length=255)
    notes: str | None = Field(default=None, max_length=1000)


class RefundData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    payment_id: str
    amount: Decimal
    currency: str
    reason: str
    notes: str | None = None
    status: RefundStatus
    gateway_refund_id: str | None = None
    failure_code: str | None = None
    processed_at: datetime | None = None
    created_at: datetime


class WebhookAckData(BaseModel):
    """回调处理结果（网关只关心 HTTP 200）"""
    received: bool = True
    result: Literal["updated", "duplicate", "ignored", "not_found", "error"]
    payment_id: str | None = None
    refund_id: str | None = None
    status: str | None = None


PaymentDetailData.model_rebuild()
