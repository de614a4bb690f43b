"""
订单状态机

订单状态的合法流转只在这里定义和校验。
"""
from app.api.errors import InvalidTransition
from app.enums import OrderStatus

# 当前状态 -> 允许进入的下一状态
ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.pending: frozenset({OrderStatus.confirmed, OrderStatus.cancelled}),
    OrderStatus.confirmed: frozenset(
        {OrderStatus.preparing, OrderStatus.processing, OrderStatus.cancelled}
    ),
    OrderStatus.preparing: frozenset(
        {OrderStatus.processing, OrderStatus.shipped, OrderStatus.cancelled}
    ),
    OrderStatus.processing: frozenset({OrderStatus.shipped, OrderStatus.cancelled}),
    OrderStatus.shipped: frozenset({OrderStatus.delivered}),
    OrderStatus.delivered: frozenset({OrderStatus.refunded}),
    OrderStatus.cancelled: frozenset(),
    OrderStatus.refunded: frozenset(),
}

# 首次进入某状态时写入的时间戳字段
TRANSITION_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.confirmed: "confirmed_at",
    OrderStatus.shipped: "shipped_at",
    OrderStatus.delivered: "delivered_at",
    OrderStatus.cancelled: "cancelled_at",
    OrderStatus.refunded: "refunded_at",
}


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def assert_transition(current: OrderStatus | str, target: OrderStatus | str) -> None:
    """
    校验状态流转

    Raises:
        InvalidTransition: 流转表中不存在 current -> target
    """
    if not can_transition(current, target):
        raise InvalidTransition(OrderStatus(current).value, OrderStatus(target).value)


def is_terminal(status: OrderStatus | str) -> bool:
    return not ORDER_TRANSITIONS[OrderStatus(status)]
