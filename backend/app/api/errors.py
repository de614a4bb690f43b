"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。

错误码规则：HTTP 状态码 * 1000 + 业务序号，
例如 404301 表示"订单不存在"。响应的 data.error 给出错误类型，
客户端可以据此分支处理，而不必解析 message。
"""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """
    应用自定义异常类

    用于业务逻辑中的错误处理，包含：
    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息（用户友好的提示）
    - status_code: HTTP 状态码（400, 404, 500 等）
    - data: 附加信息（错误类型、相关 ID 等），原样放入响应的 data 字段

    使用示例：
        raise AppError(code=400301, message="Cart is empty", status_code=400)
    """

    def __init__(
        self,
        *,
        code: int,
        message: str,
        status_code: int = 400,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)  # 调用父类构造函数
        self.code = code
        self.message = message
        self.status_code = status_code
        self.data = data


class EmptyCart(AppError):
    def __init__(self) -> None:
        super().__init__(
            code=400301,
            message="Cart is empty",
            status_code=400,
            data={"error": "EmptyCart"},
        )


class ListingUnavailable(AppError):
    """商品不存在、未上架或已停用"""

    def __init__(self, listing_id: int, *, title: str | None = None) -> None:
        name = title or str(listing_id)
        super().__init__(
            code=400302,
            message=f"Listing {name} is not available",
            status_code=400,
            data={"error": "ListingUnavailable", "listing_id": str(listing_id)},
        )
        self.listing_id = listing_id


class InsufficientStock(AppError):
    """库存不足（校验时不足，或并发扣减时被别人抢先）"""

    def __init__(
        self,
        listing_id: int,
        *,
        title: str | None = None,
        requested: int | None = None,
        available: int | None = None,
    ) -> None:
        name = title or str(listing_id)
        message = f"Insufficient quantity for {name}"
        if available is not None:
            message += f". Available: {available}"
        super().__init__(
            code=400303,
            message=message,
            status_code=400,
            data={
                "error": "InsufficientStock",
                "listing_id": str(listing_id),
                "requested": requested,
                "available": available,
            },
        )
        self.listing_id = listing_id


class RefundExceedsBalance(AppError):
    def __init__(self, *, requested: Any, refundable: Any) -> None:
        super().__init__(
            code=400501,
            message=f"Refund amount exceeds refundable balance. Maximum: {refundable}",
            status_code=400,
            data={
                "error": "RefundExceedsBalance",
                "requested": str(requested),
                "refundable": str(refundable),
            },
        )


class Forbidden(AppError):
    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code=403001, message=message, status_code=403, data={"error": "Forbidden"}
        )


class ListingNotFound(AppError):
    def __init__(self, listing_id: int) -> None:
        super().__init__(
            code=404201,
            message="Listing not found",
            status_code=404,
            data={"error": "ListingNotFound", "listing_id": str(listing_id)},
        )


class OrderNotFound(AppError):
    def __init__(self, order_id: int | str) -> None:
        super().__init__(
            code=404301,
            message="Order not found",
            status_code=404,
            data={"error": "OrderNotFound", "order_id": str(order_id)},
        )


class PaymentNotFound(AppError):
    def __init__(self, payment_id: str) -> None:
        super().__init__(
            code=404401,
            message="Payment not found",
            status_code=404,
            data={"error": "PaymentNotFound", "payment_id": payment_id},
        )


class InvalidTransition(AppError):
    """订单状态流转不合法（不在流转表中，或并发写入时状态已变化）"""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            code=409301,
            message=f"Cannot transition order from {current} to {target}",
            status_code=409,
            data={"error": "InvalidTransition", "current": current, "requested": target},
        )
        self.current = current
        self.target = target


class OrderNotPayable(AppError):
    def __init__(self, status: str) -> None:
        super().__init__(
            code=409401,
            message="Order is not in a payable state",
            status_code=409,
            data={"error": "OrderNotPayable", "status": status},
        )


class PaymentAlreadyPending(AppError):
    def __init__(self, payment_id: str | None = None) -> None:
        super().__init__(
            code=409402,
            message="Payment already exists for this order",
            status_code=409,
            data={"error": "PaymentAlreadyPending", "payment_id": payment_id},
        )


class NotRefundable(AppError):
    def __init__(self, status: str) -> None:
        super().__init__(
            code=409501,
            message="Payment cannot be refunded",
            status_code=409,
            data={"error": "NotRefundable", "status": status},
        )


class GatewayError(AppError):
    """
    支付网关调用失败

    网关超时返回 504，其他失败返回 502；两者都可以重试。
    调用失败时不会落库任何支付/退款记录。
    """

    def __init__(self, message: str, *, timeout: bool = False) -> None:
        super().__init__(
            code=504401 if timeout else 502401,
            message=message,
            status_code=504 if timeout else 502,
            data={"error": "GatewayError", "retryable": True, "timeout": timeout},
        )
        self.timeout = timeout
