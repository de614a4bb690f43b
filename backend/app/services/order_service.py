"""
订单服务

负责购物车转订单、订单状态流转、取消以及订单查询统计。

下单是本服务唯一的多表多行事务：所有卖家的订单、订单明细、库存扣减
和清空购物车在同一个事务里完成，任一步失败全部回滚。
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from sqlalchemy import func, update
from sqlmodel import Session, col, select

from app import crud
from app.api.errors import EmptyCart, Forbidden, InvalidTransition, OrderNotFound
from app.core.config import settings
from app.core.snowflake import generate_id, generate_order_number
from app.crud.cart import CartLine
from app.enums import OrderPaymentStatus, OrderStatus, PaymentStatus
from app.models import Order, OrderItem, Payment, User, utc_now
from app.services import notifications, order_state, pricing

logger = logging.getLogger(__name__)

OrderRole = Literal["buyer", "seller"]


def _group_by_seller(lines: list[CartLine]) -> dict[int, list[CartLine]]:
    """按卖家分组，保持卖家首次出现的顺序"""
    groups: dict[int, list[CartLine]] = {}
    for line in lines:
        groups.setdefault(line.seller_id, []).append(line)
    return groups


def create_orders_from_cart(
    *,
    session: Session,
    buyer_id: int,
    shipping_address: dict[str, Any],
    shipping_method: str | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
) -> list[Order]:
    """
    将买家购物车转换为订单

    流程：
    1. 读取购物车快照并校验（商品可售、库存充足）
    2. 按卖家拆分，每个卖家一个订单
    3. 计算金额，写入订单和订单明细，通过库存台账扣减库存
    4. 清空购物车，一次提交

    Returns:
        创建的订单列表（顺序与卖家在购物车中首次出现的顺序一致）

    Raises:
        EmptyCart: 购物车为空
        ListingUnavailable: 商品不可售
        InsufficientStock: 库存不足（包括校验后被其他买家抢先扣减）
    """
    lines = crud.read_cart_snapshot(session=session, buyer_id=buyer_id)
    if not lines:
        raise EmptyCart()

    orders: list[Order] = []
    try:
        for seller_id, seller_lines in _group_by_seller(lines).items():
            totals = pricing.compute_totals(
                subtotal=sum((line.line_total for line in seller_lines), Decimal("0")),
                total_quantity=sum(line.quantity for line in seller_lines),
            )
            order_id = generate_id()
            order = Order(
                id=order_id,
                order_number=generate_order_number(order_id),
                buyer_id=buyer_id,
                seller_id=seller_id,
                subtotal=totals.subtotal,
                shipping_cost=totals.shipping_cost,
                tax_amount=totals.tax_amount,
                total_amount=totals.total_amount,
                currency=settings.PAYMENT_CURRENCY,
                status=OrderStatus.pending,
                payment_status=OrderPaymentStatus.pending,
                shipping_address=shipping_address,
                shipping_method=shipping_method,
                payment_method=payment_method,
                notes=notes,
            )
            session.add(order)
            # 先写订单，保证明细的外键可用
            session.flush()

            for line in seller_lines:
                session.add(
                    OrderItem(
                        order_id=order.id,
                        listing_id=line.listing_id,
                        title=line.title,
                        waste_type=line.waste_type,
                        unit=line.unit,
                        quantity=line.quantity,
                        unit_price=pricing.quantize_money(line.unit_price),
                        total_price=pricing.quantize_money(line.line_total),
                    )
                )
                crud.decrement_listing(
                    session=session, listing_id=line.listing_id, quantity=line.quantity
                )
            orders.append(order)

        crud.clear_cart(session=session, buyer_id=buyer_id)
        session.commit()
    except Exception:
        session.rollback()
        raise

    for order in orders:
        session.refresh(order)
        logger.info(
            f"Order {order.order_number} created: buyer={buyer_id} seller={order.seller_id} "
            f"total={order.total_amount}"
        )
        notifications.notify(
            notifications.ORDER_CREATED,
            order.seller_id,
            {"order_id": str(order.id), "order_number": order.order_number},
        )
    return orders


def get_order(*, session: Session, order_id: int, actor: User) -> Order:
    """
    查询订单（只有买卖双方可以查看）

    Raises:
        OrderNotFound: 订单不存在
        Forbidden: 当前用户不是订单的买家或卖家
    """
    order = session.get(Order, order_id)
    if not order:
        raise OrderNotFound(order_id)
    if actor.id not in (order.buyer_id, order.seller_id):
        raise Forbidden()
    return order


def list_order_items(*, session: Session, order_id: int) -> list[OrderItem]:
    stmt = (
        select(OrderItem)
        .where(OrderItem.order_id == order_id)
        .order_by(OrderItem.created_at, OrderItem.id)
    )
    return list(session.exec(stmt).all())


def update_status(
    *,
    session: Session,
    order_id: int,
    target: OrderStatus,
    actor: User,
    notes: str | None = None,
    tracking_number: str | None = None,
    cancellation_reason: str | None = None,
) -> Order:
    """
    更新订单状态

    规则：
    - 只有买卖双方可以操作
    - current -> target 必须在流转表中
    - 除取消外只有卖家可以推进状态；取消可以由买家或卖家发起
    - 以当前状态为条件更新（compare-and-set），并发修改时后到者失败
    - 取消时归还库存、作废待支付记录；已付款的订单资金状态保持 paid，等待退款

    Raises:
        OrderNotFound / Forbidden / InvalidTransition
    """
    order = session.get(Order, order_id)
    if not order:
        raise OrderNotFound(order_id)
    if actor.id not in (order.buyer_id, order.seller_id):
        raise Forbidden()

    target = OrderStatus(target)
    current = OrderStatus(order.status)
    order_state.assert_transition(current, target)
    if target != OrderStatus.cancelled and actor.id != order.seller_id:
        raise Forbidden("Only the seller can update order status")

    now = utc_now()
    values: dict[str, Any] = {"status": target.value, "updated_at": now}
    timestamp_field = order_state.TRANSITION_TIMESTAMPS.get(target)
    if timestamp_field and getattr(order, timestamp_field) is None:
        values[timestamp_field] = now
    if notes is not None:
        values["notes"] = notes
    if tracking_number is not None:
        values["tracking_number"] = tracking_number
    if cancellation_reason is not None:
        values["cancellation_reason"] = cancellation_reason

    try:
        result = session.exec(
            update(Order)
            .where(col(Order.id) == order_id, col(Order.status) == current.value)
            .values(**values)
        )
        if result.rowcount == 0:
            raise InvalidTransition(current.value, target.value)

        if target == OrderStatus.cancelled:
            _release_cancelled_order(session=session, order_id=order_id, now=now)

        session.commit()
    except InvalidTransition:
        session.rollback()
        fresh = session.get(Order, order_id, populate_existing=True)
        raise InvalidTransition(
            fresh.status if fresh else current.value, target.value
        ) from None
    except Exception:
        session.rollback()
        raise

    session.refresh(order)
    logger.info(
        f"Order {order.order_number} {current.value} -> {target.value} by user {actor.id}"
    )

    event = (
        notifications.ORDER_CANCELLED
        if target == OrderStatus.cancelled
        else notifications.ORDER_STATUS_UPDATED
    )
    counterparty = order.seller_id if actor.id == order.buyer_id else order.buyer_id
    notifications.notify(
        event,
        counterparty,
        {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "status": target.value,
        },
    )
    return order


def _release_cancelled_order(*, session: Session, order_id: int, now: datetime) -> None:
    """取消订单的附带操作：归还库存、作废待支付记录、更新资金状态"""
    for item in list_order_items(session=session, order_id=order_id):
        crud.restore_listing(
            session=session, listing_id=item.listing_id, quantity=item.quantity
        )

    session.exec(
        update(Payment)
        .where(
            col(Payment.order_id) == order_id,
            col(Payment.status) == PaymentStatus.PENDING.value,
        )
        .values(status=PaymentStatus.EXPIRED.value, updated_at=now)
    )
    # 已收款的订单保持 paid，等待退款
    session.exec(
        update(Order)
        .where(
            col(Order.id) == order_id,
            col(Order.payment_status) != OrderPaymentStatus.paid.value,
        )
        .values(payment_status=OrderPaymentStatus.cancelled.value)
    )


def cancel_order(
    *,
    session: Session,
    order_id: int,
    actor: User,
    reason: str,
    notes: str | None = None,
) -> Order:
    """取消订单（买家或卖家），语义同 update_status(target=cancelled)"""
    return update_status(
        session=session,
        order_id=order_id,
        target=OrderStatus.cancelled,
        actor=actor,
        notes=notes,
        cancellation_reason=reason,
    )


def _party_filter(user_id: int, role: OrderRole):
    return Order.buyer_id == user_id if role == "buyer" else Order.seller_id == user_id


def list_orders(
    *,
    session: Session,
    user_id: int,
    role: OrderRole = "buyer",
    status: OrderStatus | None = None,
    payment_status: OrderPaymentStatus | None = None,
    order_number: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Order], int]:
    """
    分页查询当前用户作为买家或卖家的订单（最新的在前）

    Returns:
        (订单列表, 总数)
    """
    conditions = [_party_filter(user_id, role)]
    if status is not None:
        conditions.append(col(Order.status) == OrderStatus(status).value)
    if payment_status is not None:
        conditions.append(
            col(Order.payment_status) == OrderPaymentStatus(payment_status).value
        )
    if order_number:
        conditions.append(col(Order.order_number).contains(order_number))

    total = session.exec(
        select(func.count()).select_from(Order).where(*conditions)
    ).one()
    stmt = (
        select(Order)
        .where(*conditions)
        .order_by(col(Order.created_at).desc(), col(Order.id).desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(session.exec(stmt).all()), int(total)


def order_stats(*, session: Session, user_id: int, role: OrderRole = "buyer") -> dict[str, Any]:
    """
    订单统计

    total_revenue 只统计未取消、未退款的订单金额，
    average_order_value 为这些订单的平均金额。
    """
    rows = session.exec(
        select(Order.status, func.count(), func.coalesce(func.sum(Order.total_amount), 0))
        .where(_party_filter(user_id, role))
        .group_by(Order.status)
    ).all()

    counts = {s.value: 0 for s in OrderStatus}
    total_orders = 0
    revenue = Decimal("0")
    revenue_orders = 0
    for status, count, amount in rows:
        counts[OrderStatus(status).value] = int(count)
        total_orders += int(count)
        if OrderStatus(status) not in (OrderStatus.cancelled, OrderStatus.refunded):
            revenue += Decimal(str(amount))
            revenue_orders += int(count)

    average = revenue / revenue_orders if revenue_orders else Decimal("0")
    return {
        "total_orders": total_orders,
        "status_counts": counts,
        "total_revenue": pricing.quantize_money(revenue),
        "average_order_value": pricing.quantize_money(average),
    }
