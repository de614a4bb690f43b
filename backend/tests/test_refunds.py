from __future__ import annotations

from decimal import Decimal

from sqlmodel import select

from app.enums import UserRole
from app.integrations.payment_channels import RefundReceipt
from app.integrations.xendit import get_payment_gateway
from app.main import app
from app.models import Order, Refund
from app.services import notifications

ADDRESS = {
    "recipient_name": "Andi",
    "phone": "+628333333333",
    "address": "Jl. Pemuda 3",
    "city": "Surabaya",
}
WEBHOOK = "/api/v1/payments/webhook"


def _paid_payment(client, make_user, make_listing, add_to_cart, headers):
    """下单、发起虚拟账户支付并模拟到账，返回 (buyer, seller, order, payment)"""
    buyer = make_user()
    seller = make_user(UserRole.business)
    add_to_cart(buyer, make_listing(seller, price="100000"), 2)
    order = client.post(
        "/api/v1/orders", headers=headers(buyer), json={"shipping_address": ADDRESS}
    ).json()["data"][0]
    payment = client.post(
        "/api/v1/payments",
        headers=headers(buyer),
        json={"order_id": order["id"], "payment_method": "BANK_TRANSFER"},
    ).json()["data"]
    r = client.post(
        WEBHOOK,
        json={"callback_virtual_account_id": payment["gateway_invoice_id"], "payment_id": "vp-1"},
    )
    assert r.json()["data"]["result"] == "updated"
    return buyer, seller, order, payment


def _refund(client, user_headers, payment_id, amount, reason="Barang rusak"):
    return client.post(
        f"/api/v1/payments/{payment_id}/refund",
        headers=user_headers,
        json={"amount": amount, "reason": reason},
    )


def _complete(client, refund):
    return client.post(
        WEBHOOK,
        json={
            "event": "refund.succeeded",
            "data": {"id": refund["gateway_refund_id"], "status": "SUCCEEDED"},
        },
    )


def test_refund_above_balance_rejected(
    client, db, make_user, make_listing, add_to_cart, headers
):
    buyer, _, _, payment = _paid_payment(client, make_user, make_listing, add_to_cart, headers)

    r = _refund(client, headers(buyer), payment["id"], "270000.01")
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == 400501
    assert body["data"]["error"] == "RefundExceedsBalance"
    assert Decimal(body["data"]["refundable"]) == Decimal("270000")
    assert db.exec(select(Refund)).all() == []


def test_partial_refund_then_balance_shrinks(
    client, db, make_user, make_listing, add_to_cart, headers, fake_redis
):
    buyer, seller, order, payment = _paid_payment(
        client, make_user, make_listing, add_to_cart, headers
    )

    r = _refund(client, headers(seller), payment["id"], "100000")
    assert r.status_code == 201
    refund = r.json()["data"]
    assert refund["status"] == "PENDING"
    assert refund["gateway_refund_id"] == f"mock-rfd-{refund['id']}"
    assert [e["user_id"] for e in fake_redis.events(notifications.REFUND_CREATED)] == [
        str(buyer.id)
    ]

    db.expire_all()
    assert db.get(Order, order["id"]).status == "confirmed"

    r = _complete(client, refund)
    assert r.status_code == 200
    assert r.json()["data"]["result"] == "updated"
    assert r.json()["data"]["refund_id"] == refund["id"]
    assert r.json()["data"]["status"] == "COMPLETED"

    # 重复的退款回调不做修改
    assert _complete(client, refund).json()["data"]["result"] == "duplicate"

    detail = client.get(f"/api/v1/payments/{payment['id']}", headers=headers(buyer)).json()["data"]
    assert Decimal(str(detail["refundable_amount"])) == Decimal("170000")
    assert [x["status"] for x in detail["refunds"]] == ["COMPLETED"]

    r = _refund(client, headers(buyer), payment["id"], "170000.01")
    assert r.status_code == 400
    assert r.json()["code"] == 400501


def test_full_refund_marks_order_refunded(
    client, db, make_user, make_listing, add_to_cart, headers
):
    buyer, _, order, payment = _paid_payment(client, make_user, make_listing, add_to_cart, headers)

    r = _refund(client, headers(buyer), payment["id"], "270000")
    assert r.status_code == 201

    db.expire_all()
    refunded = db.get(Order, order["id"])
    assert refunded.status == "refunded"
    assert refunded.payment_status == "refunded"
    assert refunded.refunded_at is not None


def test_full_refund_of_cancelled_order_keeps_status(
    client, db, make_user, make_listing, add_to_cart, headers
):
    buyer, seller, order, payment = _paid_payment(
        client, make_user, make_listing, add_to_cart, headers
    )
    r = client.post(
        f"/api/v1/orders/{order['id']}/cancel", headers=headers(seller), json={"reason": "stok habis"}
    )
    assert r.json()["data"]["payment_status"] == "paid"

    assert _refund(client, headers(seller), payment["id"], "270000").status_code == 201
    db.expire_all()
    stored = db.get(Order, order["id"])
    assert stored.status == "cancelled"
    assert stored.payment_status == "refunded"


def test_refund_rules(client, make_user, make_listing, add_to_cart, headers):
    buyer = make_user()
    seller = make_user(UserRole.business)
    add_to_cart(buyer, make_listing(seller), 1)
    order = client.post(
        "/api/v1/orders", headers=headers(buyer), json={"shipping_address": ADDRESS}
    ).json()["data"][0]
    pending = client.post(
        "/api/v1/payments",
        headers=headers(buyer),
        json={"order_id": order["id"], "payment_method": "EWALLET"},
    ).json()["data"]

    r = _refund(client, headers(buyer), pending["id"], "1000")
    assert r.status_code == 409
    assert r.json()["code"] == 409501
    assert r.json()["data"]["status"] == "PENDING"

    r = _refund(client, headers(make_user()), pending["id"], "1000")
    assert r.status_code == 403

    r = _refund(client, headers(buyer), "missing", "1000")
    assert r.status_code == 404
    assert r.json()["code"] == 404401

    r = _refund(client, headers(buyer), pending["id"], "0")
    assert r.status_code == 422


def test_completion_beyond_balance_fails_refund(
    client, db, make_user, make_listing, add_to_cart, headers
):
    buyer, _, _, payment = _paid_payment(client, make_user, make_listing, add_to_cart, headers)

    # 两笔都在 PENDING 时各自都没超过可退金额
    first = _refund(client, headers(buyer), payment["id"], "200000").json()["data"]
    second = _refund(client, headers(buyer), payment["id"], "200000").json()["data"]

    assert _complete(client, first).json()["data"]["status"] == "COMPLETED"
    r = _complete(client, second)
    assert r.json()["data"]["status"] == "FAILED"

    db.expire_all()
    failed = db.get(Refund, second["id"])
    assert failed.failure_code == "REFUND_EXCEEDS_BALANCE"

    detail = client.get(f"/api/v1/payments/{payment['id']}", headers=headers(buyer)).json()["data"]
    assert Decimal(str(detail["refundable_amount"])) == Decimal("70000")


def test_gateway_completed_refund_counts_immediately(
    client, make_user, make_listing, add_to_cart, headers
):
    buyer, _, _, payment = _paid_payment(client, make_user, make_listing, add_to_cart, headers)

    class _InstantGateway:
        def create_refund(self, *, correlation_id, amount, reason, external_id, currency):
            assert correlation_id == "vp-1"
            return RefundReceipt(refund_id=f"rfd-{external_id}", status="SUCCEEDED")

    app.dependency_overrides[get_payment_gateway] = lambda: _InstantGateway()

    r = _refund(client, headers(buyer), payment["id"], "70000")
    assert r.json()["data"]["status"] == "COMPLETED"
    assert r.json()["data"]["processed_at"] is not None

    detail = client.get(f"/api/v1/payments/{payment['id']}", headers=headers(buyer)).json()["data"]
    assert Decimal(str(detail["refundable_amount"])) == Decimal("200000")


def test_unknown_refund_webhook(client):
    r = client.post(WEBHOOK, json={"event": "refund.failed", "data": {"id": "nope"}})
    assert r.status_code == 200
    assert r.json()["data"]["result"] == "not_found"
    assert r.json()["data"]["refund_id"] == "nope"
