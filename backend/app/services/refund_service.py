"""
退款服务

负责：
- 对已付款的支付记录发起退款（全额或部分）
- 处理网关的退款回调（PENDING -> COMPLETED / FAILED）

不变量：同一支付记录下 COMPLETED 退款金额之和不超过支付金额。
发起退款时按"支付金额 - 已完成退款"校验；退款完成时再校验一次，
超出的退款会被标记为 FAILED。
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, update
from sqlmodel import Session, col, select

from app.api.errors import (
    AppError,
    Forbidden,
    NotRefundable,
    PaymentNotFound,
    RefundExceedsBalance,
)
from app.enums import OrderPaymentStatus, OrderStatus, RefundStatus
from app.integrations.payment_channels import WebhookEvent
from app.integrations.xendit import PaymentGateway
from app.models import Order, Payment, Refund, User, utc_now
from app.services import notifications, order_state, pricing
from app.services.payment_service import (
    RESULT_DUPLICATE,
    RESULT_IGNORED,
    RESULT_NOT_FOUND,
    RESULT_UPDATED,
    CallbackResult,
    is_captured,
)

logger = logging.getLogger(__name__)

# 网关退款状态 -> 退款状态
_REFUND_STATUS_MAP: dict[str, RefundStatus] = {
    "SUCCEEDED": RefundStatus.COMPLETED,
    "COMPLETED": RefundStatus.COMPLETED,
    "FAILED": RefundStatus.FAILED,
    "PENDING": RefundStatus.PENDING,
}


def completed_refund_total(*, session: Session, payment_id: str) -> Decimal:
    total = session.exec(
        select(func.coalesce(func.sum(Refund.amount), 0)).where(
            Refund.payment_id == payment_id,
            Refund.status == RefundStatus.COMPLETED.value,
        )
    ).one()
    return pricing.quantize_money(Decimal(str(total)))


def refundable_amount(*, session: Session, payment: Payment) -> Decimal:
    """可退金额 = 支付金额 - 已完成退款金额（不小于 0）"""
    remaining = Decimal(payment.amount) - completed_refund_total(
        session=session, payment_id=payment.id
    )
    return pricing.quantize_money(max(remaining, Decimal("0")))


def list_refunds(*, session: Session, payment_id: str) -> list[Refund]:
    stmt = (
        select(Refund)
        .where(Refund.payment_id == payment_id)
        .order_by(col(Refund.created_at), col(Refund.id))
    )
    return list(session.exec(stmt).all())


def create_refund(
    *,
    session: Session,
    gateway: PaymentGateway,
    payment_id: str,
    amount: Decimal,
    reason: str,
    actor: User,
    notes: str | None = None,
) -> Refund:
    """
    发起退款

    规则：
    - 只有支付记录的买家或订单的卖家可以发起
    - 支付状态必须是 PAID 或 SETTLED
    - 金额必须为正数，且不超过可退金额
    - 全额退款时订单立即转为 refunded（已取消的订单保持 cancelled，只更新资金状态）

    Raises:
        PaymentNotFound / Forbidden / NotRefundable / RefundExceedsBalance / GatewayError
    """
    amount = pricing.quantize_money(amount)
    if amount <= 0:
        raise AppError(code=422501, message="Refund amount must be positive", status_code=422)

    try:
        payment = session.exec(
            select(Payment).where(Payment.id == payment_id).with_for_update()
        ).first()
        if not payment:
            raise PaymentNotFound(payment_id)
        order = session.get(Order, payment.order_id)
        if actor.id != payment.buyer_id and (order is None or actor.id != order.seller_id):
            raise Forbidden()
        if not is_captured(payment.status):
            raise NotRefundable(payment.status)

        refundable = refundable_amount(session=session, payment=payment)
        if amount > refundable:
            raise RefundExceedsBalance(requested=amount, refundable=refundable)

        refund_id = str(uuid.uuid4())
        receipt = gateway.create_refund(
            correlation_id=payment.gateway_payment_id or payment.gateway_invoice_id,
            amount=amount,
            reason=reason,
            external_id=refund_id,
            currency=payment.currency,
        )

        now = utc_now()
        status = _REFUND_STATUS_MAP.get(receipt.status.upper(), RefundStatus.PENDING)
        refund = Refund(
            id=refund_id,
            payment_id=payment.id,
            amount=amount,
            currency=payment.currency,
            reason=reason,
            notes=notes,
            status=status,
            gateway_refund_id=receipt.refund_id,
            gateway_response=receipt.raw,
            processed_at=now if status != RefundStatus.PENDING else None,
        )
        session.add(refund)

        is_full_refund = amount == pricing.quantize_money(Decimal(payment.amount))
        if is_full_refund and order is not None:
            _cascade_full_refund(session=session, order_id=order.id, now=now)
        session.commit()
    except Exception:
        session.rollback()
        raise

    session.refresh(refund)
    logger.info(
        f"Refund {refund.id} created for payment {payment_id}: amount={amount} "
        f"full={is_full_refund}"
    )
    notifications.notify(
        notifications.REFUND_CREATED,
        payment.buyer_id,
        {"refund_id": refund.id, "payment_id": payment_id, "amount": str(amount)},
    )
    return refund


def _cascade_full_refund(*, session: Session, order_id: int, now: datetime) -> None:
    """
    全额退款级联到订单

    退款发起即视为成功（乐观处理），不等待退款回调。
    以订单未进入终态为条件更新；并发取消已提交时订单保持 cancelled，只更新资金状态。
    """
    terminal = [s.value for s in OrderStatus if order_state.is_terminal(s)]
    result = session.exec(
        update(Order)
        .where(col(Order.id) == order_id, col(Order.status).not_in(terminal))
        .values(
            status=OrderStatus.refunded.value,
            payment_status=OrderPaymentStatus.refunded.value,
            refunded_at=now,
            updated_at=now,
        )
    )
    if result.rowcount:
        return

    session.exec(
        update(Order)
        .where(col(Order.id) == order_id, col(Order.status) == OrderStatus.cancelled.value)
        .values(payment_status=OrderPaymentStatus.refunded.value, updated_at=now)
    )


def reconcile_refund(*, session: Session, event: WebhookEvent) -> CallbackResult:
    """
    处理退款回调

    PENDING -> COMPLETED / FAILED，以当前状态为条件更新；重复回调不做修改。
    完成后会导致已完成退款总额超过支付金额的退款改为 FAILED。
    """
    refund = None
    if event.refund_id:
        refund = session.exec(
            select(Refund).where(Refund.gateway_refund_id == event.refund_id)
        ).first()
    if not refund:
        logger.warning(f"Refund not found for webhook: refund_id={event.refund_id}")
        return CallbackResult(result=RESULT_NOT_FOUND, refund_id=event.refund_id)

    target = _REFUND_STATUS_MAP.get(event.status)
    current = RefundStatus(refund.status)
    if target is None or target == RefundStatus.PENDING:
        logger.warning(f"Unhandled refund webhook status {event.status} for refund {refund.id}")
        return CallbackResult(result=RESULT_IGNORED, refund_id=refund.id, status=current.value)
    if current == target:
        return CallbackResult(result=RESULT_DUPLICATE, refund_id=refund.id, status=current.value)
    if current != RefundStatus.PENDING:
        logger.warning(
            f"Ignoring refund webhook {event.status} for refund {refund.id} in status {current.value}"
        )
        return CallbackResult(result=RESULT_IGNORED, refund_id=refund.id, status=current.value)

    refund_id = refund.id
    failure_code = event.failure_code
    try:
        if target == RefundStatus.COMPLETED:
            payment = session.exec(
                select(Payment).where(Payment.id == refund.payment_id).with_for_update()
            ).one()
            if Decimal(refund.amount) > refundable_amount(session=session, payment=payment):
                logger.error(
                    f"Refund {refund_id} would exceed captured amount of payment {payment.id}, "
                    "marking as failed"
                )
                target = RefundStatus.FAILED
                failure_code = "REFUND_EXCEEDS_BALANCE"

        now = utc_now()
        result = session.exec(
            update(Refund)
            .where(col(Refund.id) == refund_id, col(Refund.status) == RefundStatus.PENDING.value)
            .values(
                status=target.value,
                processed_at=now,
                failure_code=failure_code,
                gateway_response={**(refund.gateway_response or {}), "webhook": event.raw},
                updated_at=now,
            )
        )
        if result.rowcount == 0:
            session.rollback()
            return CallbackResult(result=RESULT_DUPLICATE, refund_id=refund_id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Refund {refund_id} {current.value} -> {target.value}")
    return CallbackResult(result=RESULT_UPDATED, refund_id=refund_id, status=target.value)
