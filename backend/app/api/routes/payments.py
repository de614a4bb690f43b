"""
支付路由模块

处理支付相关的 API 端点，包括：
- 发起支付（虚拟账户 / 电子钱包 / 便利店 / 银行卡）
- 查询支付记录、统计和支付方式目录
- 发起退款
- 接收支付网关回调（Webhook）
"""
from __future__ import annotations

import hmac
import logging
from typing import Any

import sentry_sdk  # Sentry 错误监控
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from app.api.deps import CurrentUser, GatewayDep, SessionDep  # 依赖注入
from app.api.schemas import (
    ApiEnvelope,
    PaymentCreateRequest,
    PaymentData,
    PaymentDetailData,
    PaymentMethodData,
    PaymentsData,
    PaymentStatsData,
    RefundCreateRequest,
    RefundData,
    WebhookAckData,
)
from app.core.config import settings
from app.enums import PaymentChannel, PaymentStatus
from app.integrations.payment_channels import ChannelParams, Customer
from app.services import payment_service, refund_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=ApiEnvelope, status_code=201)
def create_payment(
    session: SessionDep,
    current_user: CurrentUser,
    gateway: GatewayDep,
    body: PaymentCreateRequest,
) -> ApiEnvelope:
    """
    发起支付

    只有订单买家可以对待确认（pending）的订单发起支付，每个订单同时只能有一条待支付记录。

    请求路径: POST /api/v1/payments

    Raises:
        AppError: 订单不存在（404301）、无权限（403001）、订单不可支付（409401）、
                  已有待支付记录（409402）、网关错误（502401 / 504401）
    """
    params = ChannelParams(
        bank_code=body.bank_code.value if body.bank_code else None,
        ewallet_type=body.ewallet_type.value if body.ewallet_type else None,
        retail_outlet_name=body.retail_outlet_name.value if body.retail_outlet_name else None,
        mobile_number=body.mobile_number,
    )
    customer = (
        Customer(name=body.customer.name, email=body.customer.email, phone=body.customer.phone)
        if body.customer
        else None
    )
    payment = payment_service.initiate_payment(
        session=session,
        gateway=gateway,
        order_id=body.order_id,
        channel=body.payment_method,
        buyer=current_user,
        channel_params=params,
        customer=customer,
    )
    return ApiEnvelope(
        message="Payment created successfully", data=PaymentData.model_validate(payment)
    )


async def _webhook_body(request: Request) -> Any:
    # 请求体解析失败时返回 None，由路由按 ignored 应答
    try:
        return await request.json()
    except ValueError:
        logger.warning("Webhook body is not valid JSON")
        return None


@router.post("/webhook", response_model=ApiEnvelope)
def payment_webhook(
    session: SessionDep,
    payload: Any = Depends(_webhook_body),
    x_callback_token: str | None = Header(default=None),
) -> ApiEnvelope:
    """
    支付网关回调

    配置了 XENDIT_CALLBACK_TOKEN 时校验 x-callback-token 请求头，不匹配返回 401。
    其余情况总是返回 200，避免网关无限重试；处理异常记录日志并上报 Sentry。

    请求路径: POST /api/v1/payments/webhook
    """
    expected = settings.XENDIT_CALLBACK_TOKEN
    if expected and not hmac.compare_digest(x_callback_token or "", expected):
        raise HTTPException(status_code=401, detail="Invalid callback token")

    if not isinstance(payload, dict):
        logger.warning("Webhook body is not a JSON object")
        return ApiEnvelope(data=WebhookAckData(result="ignored"))

    try:
        result = payment_service.handle_callback(session=session, payload=payload)
    except Exception as e:
        logger.exception(f"Webhook processing failed: {e}")
        sentry_sdk.capture_exception(e)
        return ApiEnvelope(data=WebhookAckData(result="error"))

    return ApiEnvelope(
        data=WebhookAckData(
            result=result.result,
            payment_id=result.payment_id,
            refund_id=result.refund_id,
            status=result.status,
        )
    )


@router.get("", response_model=ApiEnvelope)
def list_payments(
    session: SessionDep,
    current_user: CurrentUser,
    order_id: int | None = Query(default=None),
    status: PaymentStatus | None = Query(default=None),
    channel: PaymentChannel | None = Query(default=None),
    page: int = Query(default=1, ge=1),  # 页码，从 1 开始
    limit: int = Query(default=10, ge=1, le=100),  # 每页数量，1-100
) -> ApiEnvelope:
    """
    获取支付记录列表（分页）

    请求路径: GET /api/v1/payments?order_id=...&status=PAID
    """
    payments, count = payment_service.list_payments(
        session=session,
        actor=current_user,
        order_id=order_id,
        status=status,
        channel=channel,
        page=page,
        limit=limit,
    )
    data = [PaymentData.model_validate(p) for p in payments]
    return ApiEnvelope(data=PaymentsData(data=data, count=count, page=page, limit=limit))


@router.get("/methods", response_model=ApiEnvelope)
def get_payment_methods() -> ApiEnvelope:
    """
    支付方式目录

    请求路径: GET /api/v1/payments/methods
    """
    methods = [PaymentMethodData(**m) for m in payment_service.payment_methods()]
    return ApiEnvelope(data=methods)


@router.get("/stats", response_model=ApiEnvelope)
def get_payment_stats(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    """
    支付统计（当前用户作为买家）

    请求路径: GET /api/v1/payments/stats
    """
    stats = payment_service.payment_stats(session=session, actor=current_user)
    return ApiEnvelope(data=PaymentStatsData(**stats))


@router.get("/{payment_id}", response_model=ApiEnvelope)
def get_payment(session: SessionDep, current_user: CurrentUser, payment_id: str) -> ApiEnvelope:
    """
    获取支付详情（附带退款记录和可退金额）

    请求路径: GET /api/v1/payments/{payment_id}
    """
    payment = payment_service.get_payment(
        session=session, payment_id=payment_id, actor=current_user
    )
    refunds = refund_service.list_refunds(session=session, payment_id=payment.id)
    refundable = (
        refund_service.refundable_amount(session=session, payment=payment)
        if payment_service.is_captured(payment.status)
        else 0
    )
    data = PaymentDetailData(
        **PaymentData.model_validate(payment).model_dump(),
        refundable_amount=refundable,
        refunds=[RefundData.model_validate(r) for r in refunds],
    )
    return ApiEnvelope(data=data)


@router.post("/{payment_id}/refund", response_model=ApiEnvelope, status_code=201)
def create_refund(
    session: SessionDep,
    current_user: CurrentUser,
    gateway: GatewayDep,
    payment_id: str,
    body: RefundCreateRequest,
) -> ApiEnvelope:
    """
    发起退款

    请求路径: POST /api/v1/payments/{payment_id}/refund

    Raises:
        AppError: 支付不存在（404401）、无权限（403001）、不可退款（409501）、
                  超过可退金额（400501）、网关错误（502401 / 504401）
    """
    refund = refund_service.create_refund(
        session=session,
        gateway=gateway,
        payment_id=payment_id,
        amount=body.amount,
        reason=body.reason,
        actor=current_user,
        notes=body.notes,
    )
    return ApiEnvelope(
        message="Refund created successfully", data=RefundData.model_validate(refund)
    )
