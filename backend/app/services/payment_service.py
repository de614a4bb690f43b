"""
支付服务

负责：
- 为订单发起支付（调用网关创建收款，落库 PENDING 支付记录）
- 处理网关回调（幂等更新支付状态，并级联到订单）
- 过期未支付记录的清理、支付查询与统计、支付方式目录

回调幂等性：支付状态写入是以当前状态为条件的 UPDATE（compare-and-set），
同一回调重复或并发到达时只有一次写入成功，也只有这一次会级联到订单。
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.api.errors import (
    Forbidden,
    OrderNotFound,
    OrderNotPayable,
    PaymentAlreadyPending,
    PaymentNotFound,
)
from app.core.config import settings
from app.enums import (
    BankCode,
    EwalletType,
    OrderPaymentStatus,
    OrderStatus,
    PaymentChannel,
    PaymentStatus,
    RetailOutlet,
)
from app.integrations import payment_channels
from app.integrations.payment_channels import ChannelParams, Customer, WebhookEvent
from app.integrations.xendit import PaymentGateway
from app.models import Order, Payment, User, utc_now
from app.services import notifications, pricing

logger = logging.getLogger(__name__)

# 网关状态词汇 -> 支付状态
_STATUS_MAP: dict[str, PaymentStatus] = {
    "PAID": PaymentStatus.PAID,
    "SETTLED": PaymentStatus.PAID,
    "SUCCEEDED": PaymentStatus.PAID,
    "COMPLETED": PaymentStatus.PAID,
    "EXPIRED": PaymentStatus.EXPIRED,
    "FAILED": PaymentStatus.FAILED,
}

# 支付状态允许的流转；迟到的付款（过期/失败后到账）总是记录为 PAID
PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PAID, PaymentStatus.EXPIRED, PaymentStatus.FAILED}
    ),
    PaymentStatus.EXPIRED: frozenset({PaymentStatus.PAID}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PAID}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.SETTLED: frozenset(),
}

_CAPTURED = (PaymentStatus.PAID, PaymentStatus.SETTLED)

# 回调处理结果
RESULT_UPDATED = "updated"
RESULT_DUPLICATE = "duplicate"
RESULT_IGNORED = "ignored"
RESULT_NOT_FOUND = "not_found"


@dataclass(frozen=True)
class CallbackResult:
    result: str
    payment_id: str | None = None
    status: str | None = None
    refund_id: str | None = None


def map_gateway_status(raw: str | None) -> PaymentStatus | None:
    """网关状态映射，不认识的状态返回 None"""
    if not raw:
        return None
    return _STATUS_MAP.get(raw.upper())


def is_captured(status: PaymentStatus | str) -> bool:
    return PaymentStatus(status) in _CAPTURED


def _channel_params_for(channel: PaymentChannel, params: ChannelParams) -> dict[str, str | None]:
    """只保留与渠道相关的参数"""
    if channel in (PaymentChannel.BANK_TRANSFER, PaymentChannel.VIRTUAL_ACCOUNT):
        return {"bank_code": params.bank_code or BankCode.BCA.value}
    if channel == PaymentChannel.EWALLET:
        return {"ewallet_type": params.ewallet_type or EwalletType.OVO.value}
    if channel == PaymentChannel.RETAIL_OUTLET:
        return {
            "retail_outlet_name": params.retail_outlet_name or RetailOutlet.ALFAMART.value
        }
    return {}


def initiate_payment(
    *,
    session: Session,
    gateway: PaymentGateway,
    order_id: int,
    channel: PaymentChannel,
    buyer: User,
    channel_params: ChannelParams | None = None,
    customer: Customer | None = None,
) -> Payment:
    """
    为订单发起支付

    流程：
    1. 锁定订单行（SELECT ... FOR UPDATE），校验买家身份、订单状态和是否已有待支付记录
    2. 调用网关创建收款
    3. 落库 PENDING 支付记录，订单资金状态置为 pending

    网关失败时不落库任何记录。

    Raises:
        OrderNotFound / Forbidden / OrderNotPayable / PaymentAlreadyPending / GatewayError
    """
    channel = PaymentChannel(channel)
    channel_params = channel_params or ChannelParams()

    try:
        order = session.exec(
            select(Order).where(Order.id == order_id).with_for_update()
        ).first()
        if not order:
            raise OrderNotFound(order_id)
        if order.buyer_id != buyer.id:
            raise Forbidden()
        if OrderStatus(order.status) != OrderStatus.pending:
            raise OrderNotPayable(order.status)

        existing = session.exec(
            select(Payment).where(
                Payment.order_id == order_id,
                Payment.status == PaymentStatus.PENDING.value,
            )
        ).first()
        if existing:
            raise PaymentAlreadyPending(existing.id)

        now = utc_now()
        default_expiry = now + timedelta(seconds=settings.PAYMENT_EXPIRY_SECONDS)
        customer = customer or Customer(
            name=buyer.full_name or buyer.email, email=buyer.email
        )
        external_id = f"order_{order.id}_{int(now.timestamp() * 1000)}"
        payable = gateway.create_payable(
            amount=Decimal(order.total_amount),
            currency=order.currency,
            channel=channel,
            channel_params=channel_params,
            customer=customer,
            external_id=external_id,
            description=f"Payment for order {order.order_number}",
            expires_at=default_expiry,
        )

        payment = Payment(
            order_id=order.id,
            buyer_id=buyer.id,
            external_id=external_id,
            gateway_invoice_id=payable.correlation_id,
            amount=order.total_amount,
            currency=order.currency,
            status=PaymentStatus.PENDING,
            channel=channel,
            virtual_account_number=payable.virtual_account_number,
            qr_string=payable.qr_string,
            payment_url=payable.payment_url,
            retail_payment_code=payable.retail_payment_code,
            customer_info=customer.as_dict(),
            expires_at=payable.expires_at or default_expiry,
            gateway_response=payable.raw,
            **_channel_params_for(channel, channel_params),
        )
        order.payment_status = OrderPaymentStatus.pending
        order.payment_method = channel.value
        order.updated_at = now
        session.add(payment)
        session.add(order)
        session.commit()
    except IntegrityError:
        # 并发发起支付时由部分唯一索引兜底
        session.rollback()
        raise PaymentAlreadyPending() from None
    except Exception:
        session.rollback()
        raise

    session.refresh(payment)
    logger.info(
        f"Payment {payment.id} created for order {order_id}: channel={channel.value} "
        f"amount={payment.amount}"
    )
    notifications.notify(
        notifications.PAYMENT_CREATED,
        buyer.id,
        {"payment_id": payment.id, "order_id": str(order_id), "channel": channel.value},
    )
    return payment


def _find_payment(*, session: Session, event: WebhookEvent) -> Payment | None:
    """先按 invoice_id 查找，再按 payment_id 查找"""
    if event.invoice_id:
        payment = session.exec(
            select(Payment).where(Payment.gateway_invoice_id == event.invoice_id)
        ).first()
        if payment:
            return payment
    if event.payment_id:
        return session.exec(
            select(Payment).where(Payment.gateway_payment_id == event.payment_id)
        ).first()
    return None


def handle_callback(*, session: Session, payload: dict[str, Any]) -> CallbackResult:
    """
    处理网关回调

    - 退款事件交给退款服务处理
    - 找不到支付记录、状态不认识：记录日志后正常返回
    - 已处于目标状态：视为重复回调，不做任何修改
    - 否则以当前状态为条件更新，只有更新成功的那次回调才级联到订单
    """
    event = payment_channels.parse_webhook(payload)
    if event is None:
        logger.warning(f"Unrecognized webhook payload: keys={sorted(payload)}")
        return CallbackResult(result=RESULT_IGNORED)

    if event.kind == payment_channels.WEBHOOK_KIND_REFUND:
        from app.services import refund_service  # 避免循环导入

        return refund_service.reconcile_refund(session=session, event=event)

    payment = _find_payment(session=session, event=event)
    if not payment:
        logger.warning(
            f"Payment not found for webhook: invoice_id={event.invoice_id} "
            f"payment_id={event.payment_id}"
        )
        return CallbackResult(result=RESULT_NOT_FOUND)

    target = map_gateway_status(event.status)
    if target is None:
        logger.warning(f"Unhandled webhook status {event.status} for payment {payment.id}")
        return CallbackResult(result=RESULT_IGNORED, payment_id=payment.id, status=payment.status)

    current = PaymentStatus(payment.status)
    if current == target or (target == PaymentStatus.PAID and is_captured(current)):
        logger.info(f"Duplicate webhook {event.status} for payment {payment.id}")
        return CallbackResult(result=RESULT_DUPLICATE, payment_id=payment.id, status=current.value)
    if target not in PAYMENT_TRANSITIONS[current]:
        logger.warning(
            f"Ignoring webhook {event.status} for payment {payment.id} in status {current.value}"
        )
        return CallbackResult(result=RESULT_IGNORED, payment_id=payment.id, status=current.value)

    now = utc_now()
    values: dict[str, Any] = {
        "status": target.value,
        "updated_at": now,
        "gateway_response": {**(payment.gateway_response or {}), "webhook": event.raw},
    }
    if target == PaymentStatus.PAID:
        values["paid_at"] = event.paid_at or now
        if event.payment_id:
            values["gateway_payment_id"] = event.payment_id
        if event.status == "SETTLED":
            values["settled_at"] = now
    elif target == PaymentStatus.FAILED:
        values["failure_code"] = event.failure_code
        values["failure_message"] = event.failure_message

    order_id = payment.order_id
    payment_id = payment.id
    try:
        result = session.exec(
            update(Payment)
            .where(col(Payment.id) == payment_id, col(Payment.status) == current.value)
            .values(**values)
        )
        if result.rowcount == 0:
            # 并发回调已经抢先处理
            session.rollback()
            logger.info(f"Concurrent webhook already applied for payment {payment_id}")
            return CallbackResult(result=RESULT_DUPLICATE, payment_id=payment_id)

        if target == PaymentStatus.PAID:
            _cascade_paid(session=session, order_id=order_id, payment_id=payment_id, now=now)
        else:
            _cascade_unpaid(session=session, order_id=order_id, target=target, now=now)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Payment {payment_id} {current.value} -> {target.value}")
    order = session.get(Order, order_id)
    if order is not None:
        if target == PaymentStatus.PAID:
            event_payload = {
                "payment_id": payment_id,
                "order_id": str(order_id),
                "order_number": order.order_number,
            }
            notifications.notify(notifications.PAYMENT_SUCCEEDED, order.buyer_id, event_payload)
            notifications.notify(notifications.PAYMENT_SUCCEEDED, order.seller_id, event_payload)
        else:
            notifications.notify(
                notifications.PAYMENT_FAILED,
                order.buyer_id,
                {"payment_id": payment_id, "order_id": str(order_id), "status": target.value},
            )
    return CallbackResult(result=RESULT_UPDATED, payment_id=payment_id, status=target.value)


def _cascade_paid(*, session: Session, order_id: int, payment_id: str, now: datetime) -> None:
    """首次进入 PAID：待确认订单转为 confirmed；订单已离开 pending 时只更新资金状态"""
    result = session.exec(
        update(Order)
        .where(col(Order.id) == order_id, col(Order.status) == OrderStatus.pending.value)
        .values(
            status=OrderStatus.confirmed.value,
            payment_status=OrderPaymentStatus.paid.value,
            confirmed_at=now,
            updated_at=now,
        )
    )
    if result.rowcount:
        return

    session.exec(
        update(Order)
        .where(col(Order.id) == order_id)
        .values(payment_status=OrderPaymentStatus.paid.value, updated_at=now)
    )
    order = session.get(Order, order_id, populate_existing=True)
    if order is not None and OrderStatus(order.status) == OrderStatus.cancelled:
        logger.error(
            f"Payment {payment_id} captured for cancelled order {order.order_number}, "
            "refund required"
        )


def _cascade_unpaid(
    *, session: Session, order_id: int, target: PaymentStatus, now: datetime
) -> None:
    """进入 FAILED / EXPIRED：订单资金状态跟随（已付款、已退款或已取消的订单不变）"""
    order_payment_status = (
        OrderPaymentStatus.failed if target == PaymentStatus.FAILED else OrderPaymentStatus.expired
    )
    session.exec(
        update(Order)
        .where(
            col(Order.id) == order_id,
            col(Order.payment_status).in_(
                [
                    OrderPaymentStatus.pending.value,
                    OrderPaymentStatus.failed.value,
                    OrderPaymentStatus.expired.value,
                ]
            ),
        )
        .values(payment_status=order_payment_status.value, updated_at=now)
    )


def expire_stale_payments(*, session: Session, now: datetime | None = None) -> int:
    """
    将已过期仍为 PENDING 的支付记录置为 EXPIRED（供外部定时任务调用）

    Returns:
        本次过期的记录数
    """
    now = now or utc_now()
    stale = session.exec(
        select(Payment).where(
            Payment.status == PaymentStatus.PENDING.value,
            col(Payment.expires_at).is_not(None),
            col(Payment.expires_at) < now,
        )
    ).all()

    expired = 0
    try:
        for payment in stale:
            result = session.exec(
                update(Payment)
                .where(
                    col(Payment.id) == payment.id,
                    col(Payment.status) == PaymentStatus.PENDING.value,
                )
                .values(status=PaymentStatus.EXPIRED.value, updated_at=now)
            )
            if result.rowcount:
                _cascade_unpaid(
                    session=session,
                    order_id=payment.order_id,
                    target=PaymentStatus.EXPIRED,
                    now=now,
                )
                expired += 1
        session.commit()
    except Exception:
        session.rollback()
        raise

    if expired:
        logger.info(f"Expired {expired} stale payments")
    return expired


def get_payment(*, session: Session, payment_id: str, actor: User) -> Payment:
    """
    查询支付记录（订单买家或卖家可以查看）

    Raises:
        PaymentNotFound / Forbidden
    """
    payment = session.get(Payment, payment_id)
    if not payment:
        raise PaymentNotFound(payment_id)
    order = session.get(Order, payment.order_id)
    if actor.id != payment.buyer_id and (order is None or actor.id != order.seller_id):
        raise Forbidden()
    return payment


def _visible_to(actor: User):
    return or_(col(Payment.buyer_id) == actor.id, col(Order.seller_id) == actor.id)


def list_payments(
    *,
    session: Session,
    actor: User,
    order_id: int | None = None,
    status: PaymentStatus | None = None,
    channel: PaymentChannel | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Payment], int]:
    """分页查询当前用户作为买家或卖家可见的支付记录（最新的在前）"""
    conditions = [_visible_to(actor)]
    if order_id is not None:
        conditions.append(col(Payment.order_id) == order_id)
    if status is not None:
        conditions.append(col(Payment.status) == PaymentStatus(status).value)
    if channel is not None:
        conditions.append(col(Payment.channel) == PaymentChannel(channel).value)

    total = session.exec(
        select(func.count())
        .select_from(Payment)
        .join(Order, col(Order.id) == col(Payment.order_id))
        .where(*conditions)
    ).one()
    stmt = (
        select(Payment)
        .join(Order, col(Order.id) == col(Payment.order_id))
        .where(*conditions)
        .order_by(col(Payment.created_at).desc(), col(Payment.id))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(session.exec(stmt).all()), int(total)


def payment_stats(*, session: Session, actor: User) -> dict[str, Any]:
    """
    支付统计（当前用户作为买家的支付记录）

    total_paid 统计 PAID / SETTLED 记录的金额。
    """
    rows = session.exec(
        select(Payment.status, func.count(), func.coalesce(func.sum(Payment.amount), 0))
        .where(Payment.buyer_id == actor.id)
        .group_by(Payment.status)
    ).all()

    counts = {s.value: 0 for s in PaymentStatus}
    total_payments = 0
    total_paid = Decimal("0")
    for status, count, amount in rows:
        counts[PaymentStatus(status).value] = int(count)
        total_payments += int(count)
        if is_captured(status):
            total_paid += Decimal(str(amount))
    return {
        "total_payments": total_payments,
        "status_counts": counts,
        "total_paid": pricing.quantize_money(total_paid),
    }


_BANK_NAMES = {
    BankCode.BCA: "Bank Central Asia",
    BankCode.BNI: "Bank Negara Indonesia",
    BankCode.BRI: "Bank Rakyat Indonesia",
    BankCode.MANDIRI: "Bank Mandiri",
    BankCode.PERMATA: "Bank Permata",
    BankCode.BSI: "Bank Syariah Indonesia",
}
_EWALLET_NAMES = {
    EwalletType.OVO: "OVO",
    EwalletType.DANA: "DANA",
    EwalletType.LINKAJA: "LinkAja",
    EwalletType.SHOPEEPAY: "ShopeePay",
    EwalletType.GOPAY: "GoPay",
}
_RETAIL_OUTLET_FEE = 2500


def payment_methods() -> list[dict[str, Any]]:
    """支付方式目录（静态配置）"""
    return [
        {
            "code": PaymentChannel.BANK_TRANSFER.value,
            "name": "Bank Transfer",
            "description": "Transfer via ATM, internet banking, or mobile banking",
            "options": [
                {"code": code.value, "name": name, "fee": 0}
                for code, name in _BANK_NAMES.items()
            ],
        },
        {
            "code": PaymentChannel.EWALLET.value,
            "name": "E-Wallet",
            "description": "Pay using your favorite e-wallet",
            "options": [
                {"code": code.value, "name": name, "fee": 0}
                for code, name in _EWALLET_NAMES.items()
            ],
        },
        {
            "code": PaymentChannel.RETAIL_OUTLET.value,
            "name": "Retail Outlet",
            "description": "Pay at convenience stores",
            "options": [
                {"code": RetailOutlet.ALFAMART.value, "name": "Alfamart", "fee": _RETAIL_OUTLET_FEE},
                {"code": RetailOutlet.INDOMARET.value, "name": "Indomaret", "fee": _RETAIL_OUTLET_FEE},
            ],
        },
        {
            "code": PaymentChannel.VIRTUAL_ACCOUNT.value,
            "name": "Virtual Account",
            "description": "Get a unique account number for payment",
            "options": [
                {"code": code.value, "name": f"{code.value} Virtual Account", "fee": 0}
                for code in (BankCode.BCA, BankCode.BNI, BankCode.BRI, BankCode.MANDIRI)
            ],
        },
        {
            "code": PaymentChannel.CREDIT_CARD.value,
            "name": "Credit Card",
            "description": "Pay with Visa, Mastercard, or JCB through a hosted checkout page",
            "options": [],
        },
    ]
