from __future__ import annotations

from sqlmodel import select

from app.core.config import settings
from app.enums import UserRole
from app.models import Order, Payment
from app.services import notifications

ADDRESS = {
    "recipient_name": "Rina",
    "phone": "+628222222222",
    "address": "Jl. Asia Afrika 8",
    "city": "Bandung",
}
WEBHOOK = "/api/v1/payments/webhook"


def _pending_payment(client, make_user, make_listing, add_to_cart, headers, method="BANK_TRANSFER"):
    buyer = make_user()
    seller = make_user(UserRole.business)
    add_to_cart(buyer, make_listing(seller, price="100000"), 2)
    order = client.post(
        "/api/v1/orders", headers=headers(buyer), json={"shipping_address": ADDRESS}
    ).json()["data"][0]
    payment = client.post(
        "/api/v1/payments",
        headers=headers(buyer),
        json={"order_id": order["id"], "payment_method": method},
    ).json()["data"]
    return buyer, seller, order, payment


def test_paid_webhook_confirms_order(
    client, db, make_user, make_listing, add_to_cart, headers, fake_redis
):
    buyer, seller, order, payment = _pending_payment(
        client, make_user, make_listing, add_to_cart, headers
    )

    r = client.post(
        WEBHOOK,
        json={
            "callback_virtual_account_id": payment["gateway_invoice_id"],
            "payment_id": "va-payment-1",
            "amount": 270000,
            "transaction_timestamp": "2026-10-19T08:00:00.000Z",
        },
    )
    assert r.status_code == 200
    ack = r.json()["data"]
    assert ack == {
        "received": True,
        "result": "updated",
        "payment_id": payment["id"],
        "refund_id": None,
        "status": "PAID",
    }

    db.expire_all()
    stored = db.get(Payment, payment["id"])
    assert stored.status == "PAID"
    assert stored.gateway_payment_id == "va-payment-1"
    assert stored.paid_at is not None
    assert stored.gateway_response["webhook"]["payment_id"] == "va-payment-1"

    confirmed = db.get(Order, order["id"])
    assert confirmed.status == "confirmed"
    assert confirmed.payment_status == "paid"
    assert confirmed.confirmed_at is not None

    succeeded = fake_redis.events(notifications.PAYMENT_SUCCEEDED)
    assert {e["user_id"] for e in succeeded} == {str(buyer.id), str(seller.id)}


def test_duplicate_webhook_is_idempotent(
    client, db, make_user, make_listing, add_to_cart, headers, fake_redis
):
    _, _, order, payment = _pending_payment(client, make_user, make_listing, add_to_cart, headers)
    payload = {"callback_virtual_account_id": payment["gateway_invoice_id"], "payment_id": "p-1"}

    assert client.post(WEBHOOK, json=payload).json()["data"]["result"] == "updated"
    db.expire_all()
    first_confirmed_at = db.get(Order, order["id"]).confirmed_at
    events = len(fake_redis.events(notifications.PAYMENT_SUCCEEDED))

    r = client.post(WEBHOOK, json=payload)
    assert r.status_code == 200
    assert r.json()["data"]["result"] == "duplicate"
    assert r.json()["data"]["status"] == "PAID"

    db.expire_all()
    assert db.get(Payment, payment["id"]).status == "PAID"
    assert db.get(Order, order["id"]).confirmed_at == first_confirmed_at
    assert len(fake_redis.events(notifications.PAYMENT_SUCCEEDED)) == events


def test_unknown_payment_returns_200(client, db):
    r = client.post(WEBHOOK, json={"id": "inv-does-not-exist", "status": "PAID"})
    assert r.status_code == 200
    assert r.json()["code"] == 0
    assert r.json()["data"]["result"] == "not_found"
    assert db.exec(select(Order)).all() == []


def test_unrecognized_and_invalid_bodies_ignored(client):
    r = client.post(WEBHOOK, json={"hello": "world"})
    assert r.status_code == 200
    assert r.json()["data"]["result"] == "ignored"

    r = client.post(WEBHOOK, json=["not", "an", "object"])
    assert r.json()["data"]["result"] == "ignored"

    r = client.post(
        WEBHOOK, content=b"{broken", headers={"Content-Type": "application/json"}
    )
    assert r.status_code == 200
    assert r.json()["data"]["result"] == "ignored"


def test_ewallet_webhook(client, db, make_user, make_listing, add_to_cart, headers):
    _, _, order, payment = _pending_payment(
        client, make_user, make_listing, add_to_cart, headers, method="EWALLET"
    )
    r = client.post(
        WEBHOOK,
        json={
            "event": "ewallet.capture",
            "data": {"id": payment["gateway_invoice_id"], "status": "SUCCEEDED"},
        },
    )
    assert r.json()["data"]["result"] == "updated"
    db.expire_all()
    assert db.get(Order, order["id"]).status == "confirmed"


def test_expired_then_late_payment(
    client, db, make_user, make_listing, add_to_cart, headers, fake_redis
):
    _, _, order, payment = _pending_payment(
        client, make_user, make_listing, add_to_cart, headers, method="CREDIT_CARD"
    )
    invoice_id = payment["gateway_invoice_id"]

    r = client.post(WEBHOOK, json={"id": invoice_id, "status": "EXPIRED"})
    assert r.json()["data"]["status"] == "EXPIRED"
    db.expire_all()
    assert db.get(Order, order["id"]).payment_status == "expired"
    assert db.get(Order, order["id"]).status == "pending"
    assert len(fake_redis.events(notifications.PAYMENT_FAILED)) == 1

    # 过期后到账仍然记为已付款
    r = client.post(WEBHOOK, json={"id": invoice_id, "status": "SETTLED"})
    assert r.json()["data"]["result"] == "updated"
    assert r.json()["data"]["status"] == "PAID"
    db.expire_all()
    stored = db.get(Payment, payment["id"])
    assert stored.status == "PAID"
    assert stored.settled_at is not None
    assert db.get(Order, order["id"]).status == "confirmed"

    # 已付款不会被失败回调覆盖
    r = client.post(WEBHOOK, json={"id": invoice_id, "status": "FAILED"})
    assert r.json()["data"]["result"] == "ignored"
    db.expire_all()
    assert db.get(Payment, payment["id"]).status == "PAID"


def test_failed_webhook_records_reason(client, db, make_user, make_listing, add_to_cart, headers):
    _, _, order, payment = _pending_payment(
        client, make_user, make_listing, add_to_cart, headers, method="CREDIT_CARD"
    )
    r = client.post(
        WEBHOOK,
        json={
            "id": payment["gateway_invoice_id"],
            "status": "FAILED",
            "failure_code": "CARD_DECLINED",
            "failure_reason": "Card declined by issuer",
        },
    )
    assert r.json()["data"]["result"] == "updated"
    db.expire_all()
    stored = db.get(Payment, payment["id"])
    assert stored.status == "FAILED"
    assert stored.failure_code == "CARD_DECLINED"
    assert stored.failure_message == "Card declined by issuer"
    assert db.get(Order, order["id"]).payment_status == "failed"


def test_paid_after_cancel_keeps_order_cancelled(
    client, db, make_user, make_listing, add_to_cart, headers
):
    buyer, _, order, payment = _pending_payment(
        client, make_user, make_listing, add_to_cart, headers
    )
    client.post(
        f"/api/v1/orders/{order['id']}/cancel", headers=headers(buyer), json={"reason": "x"}
    )

    r = client.post(
        WEBHOOK, json={"callback_virtual_account_id": payment["gateway_invoice_id"]}
    )
    assert r.json()["data"]["result"] == "updated"
    db.expire_all()
    stored = db.get(Order, order["id"])
    assert stored.status == "cancelled"
    assert stored.payment_status == "paid"


def test_callback_token_checked_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "XENDIT_CALLBACK_TOKEN", "cb-secret")

    r = client.post(WEBHOOK, json={"id": "x", "status": "PAID"})
    assert r.status_code == 401

    r = client.post(
        WEBHOOK, json={"id": "x", "status": "PAID"}, headers={"x-callback-token": "wrong"}
    )
    assert r.status_code == 401

    r = client.post(
        WEBHOOK, json={"id": "x", "status": "PAID"}, headers={"x-callback-token": "cb-secret"}
    )
    assert r.status_code == 200
    assert r.json()["data"]["result"] == "not_found"


def test_internal_error_still_acknowledged(client, monkeypatch):
    def _boom(*, session, payload):
        raise RuntimeError("database exploded")

    monkeypatch.setattr("app.services.payment_service.handle_callback", _boom)
    r = client.post(WEBHOOK, json={"id": "x", "status": "PAID"})
    assert r.status_code == 200
    assert r.json()["data"]["result"] == "error"
