from __future__ import annotations

import inspect
import re
from decimal import Decimal

import pytest
import redis

from app.api.errors import InvalidTransition
from app.api.routes import payments
from app.core.snowflake import generate_id, generate_order_number, to_base36
from app.enums import OrderStatus
from app.integrations import payment_channels
from app.models import Refund
from app.services import notifications, order_state, pricing
from app.services.payment_service import map_gateway_status


def test_pricing_example():
    totals = pricing.compute_totals(subtotal=Decimal("200000"), total_quantity=2)
    assert totals.subtotal == Decimal("200000.00")
    assert totals.shipping_cost == Decimal("50000.00")
    assert totals.tax_amount == Decimal("20000.00")
    assert totals.total_amount == Decimal("270000.00")


@pytest.mark.parametrize(
    "quantity,expected",
    [(0, "0"), (1, "50000"), (100, "50000"), (101, "100000"), (250, "150000")],
)
def test_shipping_bands(quantity, expected):
    assert pricing.shipping_cost(quantity) == Decimal(expected)


def test_tax_rounds_half_up():
    assert pricing.tax_amount(Decimal("0.05")) == Decimal("0.01")
    assert pricing.tax_amount(Decimal("1234.56")) == Decimal("123.46")


def test_transition_table():
    assert order_state.can_transition("pending", "confirmed")
    assert order_state.can_transition(OrderStatus.delivered, OrderStatus.refunded)
    assert not order_state.can_transition(OrderStatus.shipped, OrderStatus.cancelled)
    assert not order_state.can_transition(OrderStatus.pending, OrderStatus.pending)
    assert order_state.is_terminal(OrderStatus.cancelled)
    assert order_state.is_terminal(OrderStatus.refunded)
    assert not order_state.is_terminal(OrderStatus.delivered)

    with pytest.raises(InvalidTransition) as exc:
        order_state.assert_transition(OrderStatus.refunded, OrderStatus.pending)
    assert exc.value.data["current"] == "refunded"

    # 终态之外的每个状态都可以继续流转
    for status in OrderStatus:
        if status not in (OrderStatus.cancelled, OrderStatus.refunded):
            assert order_state.ORDER_TRANSITIONS[status]


def test_order_number_format():
    first, second = generate_id(), generate_id()
    assert second > first
    number = generate_order_number(first)
    assert re.fullmatch(r"ORD-[0-9A-Z]{13}", number)
    assert generate_order_number(first) == number
    assert generate_order_number(first) < generate_order_number(second)
    assert to_base36(35) == "Z"
    assert to_base36(36, width=4) == "0010"
    with pytest.raises(ValueError):
        to_base36(-1)


def test_gateway_status_mapping():
    assert map_gateway_status("paid").value == "PAID"
    assert map_gateway_status("SETTLED").value == "PAID"
    assert map_gateway_status("SUCCEEDED").value == "PAID"
    assert map_gateway_status("EXPIRED").value == "EXPIRED"
    assert map_gateway_status("FAILED").value == "FAILED"
    assert map_gateway_status("ACTIVE") is None
    assert map_gateway_status(None) is None


def test_webhook_parsing_per_channel():
    va = payment_channels.parse_webhook(
        {"callback_virtual_account_id": "va_1", "payment_id": "p_1"}
    )
    assert (va.kind, va.status, va.invoice_id, va.payment_id) == ("payment", "PAID", "va_1", "p_1")

    retail = payment_channels.parse_webhook(
        {"fixed_payment_code_id": "fpc_1", "status": "completed"}
    )
    assert (retail.invoice_id, retail.status) == ("fpc_1", "COMPLETED")

    ewallet = payment_channels.parse_webhook(
        {"event": "ewallet.capture", "data": {"id": "ewc_1", "status": "FAILED", "failure_code": "X"}}
    )
    assert (ewallet.invoice_id, ewallet.status, ewallet.failure_code) == ("ewc_1", "FAILED", "X")

    invoice = payment_channels.parse_webhook(
        {"id": "inv_1", "status": "PAID", "paid_at": "2026-10-19T01:02:03Z"}
    )
    assert invoice.invoice_id == "inv_1"
    assert invoice.paid_at.tzinfo is not None

    refund = payment_channels.parse_webhook({"event": "refund.failed", "data": {"id": "rfd_1"}})
    assert (refund.kind, refund.status, refund.refund_id) == ("refund", "FAILED", "rfd_1")

    assert payment_channels.parse_webhook({"status": "PAID"}) is None
    assert payment_channels.parse_webhook({}) is None


def test_channel_registry():
    assert payment_channels.get_channel("BANK_TRANSFER") is payment_channels.get_channel(
        "VIRTUAL_ACCOUNT"
    )
    for channel in payment_channels.CHANNEL_REGISTRY:
        assert payment_channels.get_channel(channel).path.startswith("/")
    with pytest.raises(ValueError):
        payment_channels.get_channel("CASH")


def test_notify_writes_stream_entry(fake_redis):
    assert notifications.notify(notifications.ORDER_CREATED, 7, {"amount": Decimal("1.50")})
    name, fields = fake_redis.messages[-1]
    assert name == "marketplace_notifications"
    assert fields["user_id"] == "7"
    assert '"amount": "1.50"' in fields["payload"]


def test_notify_failure_is_swallowed(monkeypatch):
    class _DownRedis:
        def xadd(self, *args, **kwargs):
            raise redis.ConnectionError("connection refused")

    monkeypatch.setattr("app.services.notifications.get_redis", lambda: _DownRedis())
    assert notifications.notify(notifications.ORDER_CREATED, 1, {}) is False


def test_health_check(client):
    r = client.get("/api/v1/utils/health-check/")
    assert r.status_code == 200
    assert r.json() is True


def test_refunds_deleted_with_payment():
    (fk,) = Refund.__table__.c.payment_id.foreign_keys
    assert fk.column.table.name == "payments"
    assert fk.ondelete == "CASCADE"


def test_webhook_runs_in_threadpool():
    # 同步路由由 FastAPI 放到线程池执行，数据库事务不阻塞事件循环
    assert not inspect.iscoroutinefunction(payments.payment_webhook)
