"""
订单路由模块

处理订单相关的 API 端点，包括：
- 购物车下单（按卖家拆单）
- 查询订单列表（分页、筛选）和统计
- 查询单个订单详情
- 更新订单状态、取消订单
"""
from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Query  # FastAPI 路由和查询参数
from sqlmodel import Session

from app.api.deps import CurrentUser, SessionDep  # 依赖注入
from app.api.schemas import (
    ApiEnvelope,
    OrderCancelRequest,
    OrderCreateRequest,
    OrderData,
    OrderItemData,
    OrdersData,
    OrderStatsData,
    OrderStatusUpdateRequest,
)
from app.enums import OrderPaymentStatus, OrderStatus
from app.models import Order
from app.services import order_service

router = APIRouter(prefix="/orders", tags=["orders"])


def _to_order_data(session: Session, order: Order) -> OrderData:
    """将订单模型（附带明细）转换为响应数据模型"""
    items = order_service.list_order_items(session=session, order_id=order.id)
    data = OrderData.model_validate(order)
    data.items = [OrderItemData.model_validate(item) for item in items]
    return data


@router.post("", response_model=ApiEnvelope, status_code=201)
def create_orders(
    session: SessionDep, current_user: CurrentUser, body: OrderCreateRequest
) -> ApiEnvelope:
    """
    购物车下单

    购物车中每个卖家生成一个订单，全部成功或全部失败。

    请求路径: POST /api/v1/orders

    Raises:
        AppError: 购物车为空（400301）、商品不可售（400302）、库存不足（400303）
    """
    orders = order_service.create_orders_from_cart(
        session=session,
        buyer_id=current_user.id,
        shipping_address=body.shipping_address.model_dump(),
        shipping_method=body.shipping_method,
        payment_method=body.payment_method.value if body.payment_method else None,
        notes=body.notes,
    )
    return ApiEnvelope(
        message="Orders created successfully",
        data=[_to_order_data(session, o) for o in orders],
    )


@router.get("", response_model=ApiEnvelope)
def list_orders(
    session: SessionDep,
    current_user: CurrentUser,
    role: Literal["buyer", "seller"] = Query(default="buyer"),  # 以买家还是卖家身份查询
    status: OrderStatus | None = Query(default=None),
    payment_status: OrderPaymentStatus | None = Query(default=None),
    order_number: str | None = Query(default=None, max_length=32),
    page: int = Query(default=1, ge=1),  # 页码，从 1 开始
    limit: int = Query(default=10, ge=1, le=100),  # 每页数量，1-100
) -> ApiEnvelope:
    """
    获取订单列表（分页）

    请求路径: GET /api/v1/orders?role=buyer&status=pending&page=1&limit=10
    """
    orders, count = order_service.list_orders(
        session=session,
        user_id=current_user.id,
        role=role,
        status=status,
        payment_status=payment_status,
        order_number=order_number,
        page=page,
        limit=limit,
    )
    data = [_to_order_data(session, o) for o in orders]
    return ApiEnvelope(data=OrdersData(data=data, count=count, page=page, limit=limit))


@router.get("/stats", response_model=ApiEnvelope)
def get_order_stats(
    session: SessionDep,
    current_user: CurrentUser,
    role: Literal["buyer", "seller"] = Query(default="buyer"),
) -> ApiEnvelope:
    """
    订单统计

    请求路径: GET /api/v1/orders/stats?role=seller
    """
    stats = order_service.order_stats(session=session, user_id=current_user.id, role=role)
    return ApiEnvelope(data=OrderStatsData(**stats))


@router.get("/{order_id}", response_model=ApiEnvelope)
def get_order(session: SessionDep, current_user: CurrentUser, order_id: int) -> ApiEnvelope:
    """
    获取订单详情（买卖双方可见）

    请求路径: GET /api/v1/orders/{order_id}
    """
    order = order_service.get_order(session=session, order_id=order_id, actor=current_user)
    return ApiEnvelope(data=_to_order_data(session, order))


@router.put("/{order_id}/status", response_model=ApiEnvelope)
def update_order_status(
    session: SessionDep,
    current_user: CurrentUser,
    order_id: int,
    body: OrderStatusUpdateRequest,
) -> ApiEnvelope:
    """
    更新订单状态

    请求路径: PUT /api/v1/orders/{order_id}/status

    Raises:
        AppError: 订单不存在（404301）、无权限（403001）、状态流转不合法（409301）
    """
    order = order_service.update_status(
        session=session,
        order_id=order_id,
        target=body.status,
        actor=current_user,
        notes=body.notes,
        tracking_number=body.tracking_number,
    )
    return ApiEnvelope(
        message="Order status updated successfully", data=_to_order_data(session, order)
    )


@router.post("/{order_id}/cancel", response_model=ApiEnvelope)
def cancel_order(
    session: SessionDep,
    current_user: CurrentUser,
    order_id: int,
    body: OrderCancelRequest,
) -> ApiEnvelope:
    """
    取消订单（买家或卖家）

    取消后归还库存；已付款的订单保持资金状态 paid，等待退款。

    请求路径: POST /api/v1/orders/{order_id}/cancel
    """
    order = order_service.cancel_order(
        session=session,
        order_id=order_id,
        actor=current_user,
        reason=body.reason,
        notes=body.notes,
    )
    return ApiEnvelope(
        message="Order cancelled successfully", data=_to_order_data(session, order)
    )
