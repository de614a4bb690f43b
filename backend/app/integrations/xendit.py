"""
Xendit 支付网关集成模块

实现 PaymentGateway 协议：
- create_payable: 按渠道创建收款（虚拟账户 / 电子钱包 / 便利店付款码 / 收银台）
- create_refund: 对已付款的收款发起退款

所有请求都有超时上限；超时抛出 504 GatewayError，其他失败抛出 502 GatewayError，
调用方可以重试。支持模拟模式（mock），用于本地开发时不需要真实 API 调用。
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any, Protocol

import httpx  # HTTP 客户端

from app.api.errors import AppError, GatewayError
from app.core.config import settings
from app.enums import PaymentChannel
from app.integrations.payment_channels import (
    ChannelParams,
    Customer,
    Payable,
    PayableRequest,
    RefundReceipt,
    gateway_amount,
    get_channel,
)

logger = logging.getLogger(__name__)

_REFUND_PATH = "/refunds"


class PaymentGateway(Protocol):
    """支付网关协议（测试中用假实现替换）"""

    def create_payable(
        self,
        *,
        amount: Decimal,
        currency: str,
        channel: PaymentChannel,
        channel_params: ChannelParams,
        customer: Customer,
        external_id: str,
        description: str,
        expires_at: datetime,
    ) -> Payable: ...

    def create_refund(
        self,
        *,
        correlation_id: str,
        amount: Decimal,
        reason: str,
        external_id: str,
        currency: str,
    ) -> RefundReceipt: ...


class XenditGateway:
    """
    Xendit API 客户端

    认证方式：HTTP Basic，用户名为 secret key，密码为空。
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        secret_key: str | None = None,
        timeout: float | None = None,
        mock: bool | None = None,
    ) -> None:
        self._mock = settings.PAYMENT_GATEWAY_MOCK if mock is None else mock
        self._base_url = (base_url or settings.XENDIT_BASE_URL).rstrip("/")
        self._secret_key = secret_key if secret_key is not None else settings.XENDIT_SECRET_KEY
        self._timeout = timeout or settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS

    def _post(self, path: str, body: dict[str, Any], *, idempotency_key: str) -> dict[str, Any]:
        """
        发送 POST 请求

        Raises:
            AppError: secret key 未配置
            GatewayError: 超时（504）或其他网络/HTTP 错误（502）
        """
        if not self._secret_key:
            raise AppError(code=500401, message="XENDIT_SECRET_KEY not configured", status_code=500)

        url = f"{self._base_url}{path}"
        try:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.post(
                    url,
                    json=body,
                    auth=(self._secret_key, ""),
                    headers={"Idempotency-key": idempotency_key},
                )
                r.raise_for_status()
                data = r.json()
        except httpx.TimeoutException as e:
            logger.warning(f"Xendit request timed out: {path} {e}")
            raise GatewayError(f"Payment gateway timeout: {e}", timeout=True)
        except httpx.HTTPError as e:
            logger.error(f"Xendit request failed: {path} {e}")
            raise GatewayError(f"Payment gateway error: {e}")
        except ValueError as e:
            raise GatewayError(f"Payment gateway invalid response: {e}")

        if not isinstance(data, dict) or not data.get("id"):
            raise GatewayError("Payment gateway invalid response")
        return data

    def create_payable(
        self,
        *,
        amount: Decimal,
        currency: str,
        channel: PaymentChannel,
        channel_params: ChannelParams,
        customer: Customer,
        external_id: str,
        description: str,
        expires_at: datetime,
    ) -> Payable:
        """
        创建收款

        Returns:
            Payable: 关联 ID、付款信息、过期时间和原始响应
        """
        handler = get_channel(channel)
        req = PayableRequest(
            external_id=external_id,
            amount=amount,
            currency=currency,
            description=description,
            customer=customer,
            params=channel_params,
            expires_at=expires_at,
            success_redirect_url=settings.PAYMENT_SUCCESS_REDIRECT_URL,
            failure_redirect_url=settings.PAYMENT_FAILURE_REDIRECT_URL,
        )
        if self._mock:
            # 模拟模式：返回与真实接口结构一致的数据
            return handler.parse_payable(handler.mock_response(req))

        data = self._post(handler.path, handler.build_request(req), idempotency_key=external_id)
        return handler.parse_payable(data)

    def create_refund(
        self,
        *,
        correlation_id: str,
        amount: Decimal,
        reason: str,
        external_id: str,
        currency: str,
    ) -> RefundReceipt:
        """对一笔收款发起退款"""
        if self._mock:
            return RefundReceipt(
                refund_id=f"mock-rfd-{external_id}",
                status="PENDING",
                raw={"mock": True, "invoice_id": correlation_id},
            )

        body = {
            "invoice_id": correlation_id,
            "reference_id": external_id,
            "amount": gateway_amount(amount),
            "currency": currency,
            "reason": reason,
        }
        data = self._post(_REFUND_PATH, body, idempotency_key=external_id)
        return RefundReceipt(
            refund_id=str(data["id"]),
            status=str(data.get("status") or "PENDING").upper(),
            raw=data,
        )


@lru_cache(maxsize=1)
def get_payment_gateway() -> PaymentGateway:
    """获取支付网关实例（依赖注入，测试中通过 dependency_overrides 替换）"""
    return XenditGateway()
