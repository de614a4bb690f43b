"""
支付渠道适配模块

每个支付渠道一个类，负责：
- build_request: 构建网关下单请求体
- parse_payable: 解析网关下单响应，提取关联 ID 和展示给买家的付款信息
- parse_webhook: 识别并解析该渠道的回调报文（不认识的报文返回 None）
- mock_response: 模拟模式下生成与真实响应结构一致的数据

渠道通过 CHANNEL_REGISTRY 按 PaymentChannel 查找，
BANK_TRANSFER 与 VIRTUAL_ACCOUNT 共用虚拟账户渠道，CREDIT_CARD 走通用收银台（invoice）。

报文格式参考 Xendit API：
- 虚拟账户: POST /callback_virtual_accounts
- 电子钱包: POST /ewallets/charges
- 便利店: POST /fixed_payment_code
- 收银台: POST /v2/invoices
- 退款: POST /refunds
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from app.enums import BankCode, EwalletType, PaymentChannel, RetailOutlet

# 回调事件类型
WEBHOOK_KIND_PAYMENT = "payment"
WEBHOOK_KIND_REFUND = "refund"


@dataclass(frozen=True)
class ChannelParams:
    """渠道参数（按渠道只使用其中一部分）"""
    bank_code: str | None = None
    ewallet_type: str | None = None
    retail_outlet_name: str | None = None
    mobile_number: str | None = None


@dataclass(frozen=True)
class Customer:
    """付款人信息"""
    name: str
    email: str | None = None
    phone: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email, "phone": self.phone}


@dataclass(frozen=True)
class PayableRequest:
    external_id: str
    amount: Decimal
    currency: str
    description: str
    customer: Customer
    params: ChannelParams
    expires_at: datetime
    success_redirect_url: str | None = None
    failure_redirect_url: str | None = None


@dataclass(frozen=True)
class Payable:
    """
    网关下单结果

    correlation_id 用于回调时查找支付记录；
    virtual_account_number / qr_string / payment_url / retail_payment_code 按渠道只填一组。
    """
    correlation_id: str
    virtual_account_number: str | None = None
    qr_string: str | None = None
    payment_url: str | None = None
    retail_payment_code: str | None = None
    expires_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundReceipt:
    refund_id: str
    status: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class WebhookEvent:
    """
    解析后的回调事件

    - kind: payment 或 refund
    - invoice_id / payment_id: 支付关联 ID（先按 invoice_id 查找，再按 payment_id）
    - refund_id: 退款关联 ID（仅 refund 事件）
    - status: 网关原始状态（大写），映射在调用方完成
    """
    kind: str
    status: str
    invoice_id: str | None = None
    payment_id: str | None = None
    refund_id: str | None = None
    paid_at: datetime | None = None
    failure_code: str | None = None
    failure_message: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def gateway_amount(value: Decimal) -> int | float:
    """网关金额：整数金额发送整数，其余发送浮点数"""
    value = Decimal(value)
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def parse_datetime(value: Any) -> datetime | None:
    """解析网关返回的 ISO 8601 时间（支持 Z 结尾）"""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _mock_id(prefix: str) -> str:
    return f"mock-{prefix}-{uuid.uuid4().hex}"


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


class PaymentChannelHandler:
    """渠道基类"""

    channels: tuple[PaymentChannel, ...] = ()
    path: str = ""

    def build_request(self, req: PayableRequest) -> dict[str, Any]:
        raise NotImplementedError

    def parse_payable(self, data: dict[str, Any]) -> Payable:
        raise NotImplementedError

    def parse_webhook(self, payload: dict[str, Any]) -> WebhookEvent | None:
        raise NotImplementedError

    def mock_response(self, req: PayableRequest) -> dict[str, Any]:
        raise NotImplementedError


class VirtualAccountChannel(PaymentChannelHandler):
    """银行虚拟账户（一次性、固定金额）"""

    channels = (PaymentChannel.BANK_TRANSFER, PaymentChannel.VIRTUAL_ACCOUNT)
    path = "/callback_virtual_accounts"

    def build_request(self, req: PayableRequest) -> dict[str, Any]:
        return {
            "external_id": req.external_id,
            "bank_code": req.params.bank_code or BankCode.BCA.value,
            "name": req.customer.name,
            "expected_amount": gateway_amount(req.amount),
            "is_closed": True,
            "is_single_use": True,
            "currency": req.currency,
            "expiration_date": _iso(req.expires_at),
        }

    def parse_payable(self, data: dict[str, Any]) -> Payable:
        return Payable(
            correlation_id=str(data["id"]),
            virtual_account_number=_str_or_none(data.get("account_number")),
            expires_at=parse_datetime(data.get("expiration_date")),
            raw=data,
        )

    def parse_webhook(self, payload: dict[str, Any]) -> WebhookEvent | None:
        va_id = payload.get("callback_virtual_account_id")
        if not va_id:
            return None
        # 虚拟账户的到账回调不带 status，收到即表示已付款
        return WebhookEvent(
            kind=WEBHOOK_KIND_PAYMENT,
            status=str(payload.get("status") or "PAID").upper(),
            invoice_id=str(va_id),
            payment_id=_str_or_none(payload.get("payment_id")),
            paid_at=parse_datetime(payload.get("transaction_timestamp")),
            raw=payload,
        )

    def mock_response(self, req: PayableRequest) -> dict[str, Any]:
        bank_code = req.params.bank_code or BankCode.BCA.value
        return {
            "id": _mock_id("va"),
            "external_id": req.external_id,
            "bank_code": bank_code,
            "account_number": "8808" + str(uuid.uuid4().int)[:10],
            "expected_amount": gateway_amount(req.amount),
            "expiration_date": _iso(req.expires_at),
            "status": "PENDING",
            "mock": True,
        }


class EwalletChannel(PaymentChannelHandler):
    """电子钱包（跳转或扫码付款）"""

    channels = (PaymentChannel.EWALLET,)
    path = "/ewallets/charges"

    def build_request(self, req: PayableRequest) -> dict[str, Any]:
        ewallet = req.params.ewallet_type or EwalletType.OVO.value
        channel_properties: dict[str, Any] = {}
        if req.params.mobile_number or req.customer.phone:
            channel_properties["mobile_number"] = req.params.mobile_number or req.customer.phone
        if req.success_redirect_url:
            channel_properties["success_redirect_url"] = req.success_redirect_url
        if req.failure_redirect_url:
            channel_properties["failure_redirect_url"] = req.failure_redirect_url
        return {
            "reference_id": req.external_id,
            "currency": req.currency,
            "amount": gateway_amount(req.amount),
            "checkout_method": "ONE_TIME_PAYMENT",
            "channel_code": f"ID_{ewallet}",
            "channel_properties": channel_properties,
            "metadata": {"description": req.description},
        }

    def parse_payable(self, data: dict[str, Any]) -> Payable:
        actions = data.get("actions") or {}
        return Payable(
            correlation_id=str(data["id"]),
            payment_url=actions.get("mobile_web_checkout_url")
            or actions.get("desktop_web_checkout_url"),
            qr_string=actions.get("qr_checkout_string"),
            raw=data,
        )

    def parse_webhook(self, payload: dict[str, Any]) -> WebhookEvent | None:
        event = str(payload.get("event") or "")
        if not event.startswith("ewallet."):
            return None
        data = payload.get("data") or {}
        return WebhookEvent(
            kind=WEBHOOK_KIND_PAYMENT,
            status=str(data.get("status") or "").upper(),
            invoice_id=_str_or_none(data.get("id")),
            payment_id=_str_or_none(data.get("payment_id")),
            paid_at=parse_datetime(data.get("updated")),
            failure_code=_str_or_none(data.get("failure_code")),
            raw=payload,
        )

    def mock_response(self, req: PayableRequest) -> dict[str, Any]:
        charge_id = _mock_id("ewc")
        return {
            "id": charge_id,
            "reference_id": req.external_id,
            "status": "PENDING",
            "currency": req.currency,
            "charge_amount": gateway_amount(req.amount),
            "channel_code": f"ID_{req.params.ewallet_type or EwalletType.OVO.value}",
            "actions": {
                "mobile_web_checkout_url": f"https://ewallet.mock/checkout/{charge_id}",
                "desktop_web_checkout_url": None,
                "qr_checkout_string": f"MOCKQR:{charge_id}",
            },
            "mock": True,
        }


class RetailOutletChannel(PaymentChannelHandler):
    """便利店柜台付款码"""

    channels = (PaymentChannel.RETAIL_OUTLET,)
    path = "/fixed_payment_code"

    def build_request(self, req: PayableRequest) -> dict[str, Any]:
        return {
            "external_id": req.external_id,
            "retail_outlet_name": req.params.retail_outlet_name or RetailOutlet.ALFAMART.value,
            "name": req.customer.name,
            "expected_amount": gateway_amount(req.amount),
            "is_single_use": True,
            "expiration_date": _iso(req.expires_at),
        }

    def parse_payable(self, data: dict[str, Any]) -> Payable:
        return Payable(
            correlation_id=str(data["id"]),
            retail_payment_code=_str_or_none(data.get("payment_code")),
            expires_at=parse_datetime(data.get("expiration_date")),
            raw=data,
        )

    def parse_webhook(self, payload: dict[str, Any]) -> WebhookEvent | None:
        fpc_id = payload.get("fixed_payment_code_id")
        if not fpc_id:
            return None
        return WebhookEvent(
            kind=WEBHOOK_KIND_PAYMENT,
            status=str(payload.get("status") or "").upper(),
            invoice_id=str(fpc_id),
            payment_id=_str_or_none(payload.get("payment_id")),
            paid_at=parse_datetime(payload.get("transaction_timestamp")),
            raw=payload,
        )

    def mock_response(self, req: PayableRequest) -> dict[str, Any]:
        return {
            "id": _mock_id("fpc"),
            "external_id": req.external_id,
            "retail_outlet_name": req.params.retail_outlet_name or RetailOutlet.ALFAMART.value,
            "payment_code": "MOCK" + uuid.uuid4().hex[:8].upper(),
            "expected_amount": gateway_amount(req.amount),
            "expiration_date": _iso(req.expires_at),
            "status": "ACTIVE",
            "mock": True,
        }


class InvoiceChannel(PaymentChannelHandler):
    """
    通用收银台（银行卡等）

    回调格式也是最通用的 {"id", "status", ...}，所以放在识别顺序的最后。
    """

    channels = (PaymentChannel.CREDIT_CARD,)
    path = "/v2/invoices"

    def build_request(self, req: PayableRequest) -> dict[str, Any]:
        duration = int((req.expires_at - datetime.now(timezone.utc)).total_seconds())
        body: dict[str, Any] = {
            "external_id": req.external_id,
            "amount": gateway_amount(req.amount),
            "description": req.description,
            "invoice_duration": max(duration, 1),
            "currency": req.currency,
            "customer": {
                "given_names": req.customer.name,
                "email": req.customer.email,
                "mobile_number": req.customer.phone,
            },
            "payment_methods": ["CREDIT_CARD"],
        }
        if req.success_redirect_url:
            body["success_redirect_url"] = req.success_redirect_url
        if req.failure_redirect_url:
            body["failure_redirect_url"] = req.failure_redirect_url
        return body

    def parse_payable(self, data: dict[str, Any]) -> Payable:
        return Payable(
            correlation_id=str(data["id"]),
            payment_url=_str_or_none(data.get("invoice_url")),
            expires_at=parse_datetime(data.get("expiry_date")),
            raw=data,
        )

    def parse_webhook(self, payload: dict[str, Any]) -> WebhookEvent | None:
        if not payload.get("status") or not (payload.get("id") or payload.get("payment_id")):
            return None
        return WebhookEvent(
            kind=WEBHOOK_KIND_PAYMENT,
            status=str(payload["status"]).upper(),
            invoice_id=_str_or_none(payload.get("id")),
            payment_id=_str_or_none(payload.get("payment_id")),
            paid_at=parse_datetime(payload.get("paid_at")),
            failure_code=_str_or_none(payload.get("failure_code")),
            failure_message=_str_or_none(payload.get("failure_reason")),
            raw=payload,
        )

    def mock_response(self, req: PayableRequest) -> dict[str, Any]:
        invoice_id = _mock_id("inv")
        return {
            "id": invoice_id,
            "external_id": req.external_id,
            "status": "PENDING",
            "amount": gateway_amount(req.amount),
            "invoice_url": f"https://checkout.mock/web/{invoice_id}",
            "expiry_date": _iso(req.expires_at),
            "mock": True,
        }


def parse_refund_webhook(payload: dict[str, Any]) -> WebhookEvent | None:
    """识别退款回调：{"event": "refund.succeeded" | "refund.failed", "data": {...}}"""
    event = str(payload.get("event") or "")
    if not event.startswith("refund."):
        return None
    data = payload.get("data") or {}
    status = str(data.get("status") or event.split(".", 1)[1]).upper()
    return WebhookEvent(
        kind=WEBHOOK_KIND_REFUND,
        status=status,
        refund_id=_str_or_none(data.get("id")),
        failure_code=_str_or_none(data.get("failure_code")),
        raw=payload,
    )


_VIRTUAL_ACCOUNT = VirtualAccountChannel()
_EWALLET = EwalletChannel()
_RETAIL_OUTLET = RetailOutletChannel()
_INVOICE = InvoiceChannel()

CHANNEL_REGISTRY: dict[PaymentChannel, PaymentChannelHandler] = {
    channel: handler
    for handler in (_VIRTUAL_ACCOUNT, _EWALLET, _RETAIL_OUTLET, _INVOICE)
    for channel in handler.channels
}

# 回调识别顺序：特征字段明确的渠道在前，通用收银台在最后
WEBHOOK_PARSE_ORDER: tuple[PaymentChannelHandler, ...] = (
    _VIRTUAL_ACCOUNT,
    _RETAIL_OUTLET,
    _EWALLET,
    _INVOICE,
)


def get_channel(channel: PaymentChannel | str) -> PaymentChannelHandler:
    """按渠道查找适配类（未知渠道抛出 ValueError）"""
    return CHANNEL_REGISTRY[PaymentChannel(channel)]


def parse_webhook(payload: dict[str, Any]) -> WebhookEvent | None:
    """
    解析回调报文

    退款事件优先识别；其余依次交给各渠道，返回第一个识别成功的结果。
    所有渠道都不认识时返回 None。
    """
    event = parse_refund_webhook(payload)
    if event is not None:
        return event
    for handler in WEBHOOK_PARSE_ORDER:
        event = handler.parse_webhook(payload)
        if event is not None:
            return event
    return None
