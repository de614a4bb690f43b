from __future__ import annotations

from decimal import Decimal

import pytest
from sqlmodel import select

from app import crud
from app.api.errors import InsufficientStock, ListingNotFound
from app.enums import ListingStatus, UserRole
from app.models import CartItem, Listing, Order, OrderItem
from app.services import notifications

ADDRESS = {
    "recipient_name": "Budi",
    "phone": "+628123456789",
    "address": "Jl. Merdeka 1",
    "city": "Bandung",
}


def _checkout(client, headers: dict[str, str], **body):
    body.setdefault("shipping_address", ADDRESS)
    return client.post("/api/v1/orders", headers=headers, json=body)


def test_create_order_pricing_and_cart_cleared(
    client, db, make_user, make_listing, add_to_cart, headers, fake_redis
):
    buyer = make_user()
    seller = make_user(UserRole.business)
    listing = make_listing(seller, price="100000", quantity=10)
    add_to_cart(buyer, listing, 2)

    r = _checkout(client, headers(buyer), shipping_method="pickup", notes="Tolong cepat")
    assert r.status_code == 201
    body = r.json()
    assert body["code"] == 0
    assert len(body["data"]) == 1

    order = body["data"][0]
    assert order["order_number"].startswith("ORD-")
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["buyer_id"] == buyer.id
    assert order["seller_id"] == seller.id
    assert Decimal(str(order["subtotal"])) == Decimal("200000")
    assert Decimal(str(order["shipping_cost"])) == Decimal("50000")
    assert Decimal(str(order["tax_amount"])) == Decimal("20000")
    assert Decimal(str(order["total_amount"])) == Decimal("270000")
    assert order["shipping_address"]["city"] == "Bandung"
    assert order["notes"] == "Tolong cepat"

    assert len(order["items"]) == 1
    item = order["items"][0]
    assert item["listing_id"] == listing.id
    assert item["quantity"] == 2
    assert Decimal(str(item["unit_price"])) == Decimal("100000")
    assert Decimal(str(item["total_price"])) == Decimal("200000")

    db.expire_all()
    assert db.exec(select(CartItem).where(CartItem.user_id == buyer.id)).all() == []
    assert db.get(Listing, listing.id).quantity == 8

    created = fake_redis.events(notifications.ORDER_CREATED)
    assert len(created) == 1
    assert created[0]["user_id"] == str(seller.id)


def test_one_order_per_seller(client, db, make_user, make_listing, add_to_cart, headers):
    buyer = make_user()
    sellers = [make_user(UserRole.business) for _ in range(3)]
    for i, seller in enumerate(sellers):
        add_to_cart(buyer, make_listing(seller, price="1000", title=f"Scrap {i}"), i + 1)
    # 同一卖家的第二个商品合并到同一个订单
    add_to_cart(buyer, make_listing(sellers[0], price="500", title="Cardboard"), 4)

    r = _checkout(client, headers(buyer))
    assert r.status_code == 201
    orders = r.json()["data"]
    assert len(orders) == 3
    assert [o["seller_id"] for o in orders] == [s.id for s in sellers]
    assert len({o["order_number"] for o in orders}) == 3

    first = orders[0]
    assert len(first["items"]) == 2
    # 1 × 1000 + 4 × 500 = 3000，5 个单位一档运费
    assert Decimal(str(first["subtotal"])) == Decimal("3000")
    assert Decimal(str(first["shipping_cost"])) == Decimal("50000")
    assert Decimal(str(first["tax_amount"])) == Decimal("300")
    for o in orders:
        total = (
            Decimal(str(o["subtotal"]))
            + Decimal(str(o["shipping_cost"]))
            + Decimal(str(o["tax_amount"]))
        )
        assert Decimal(str(o["total_amount"])) == total

    db.expire_all()
    assert len(db.exec(select(Order).where(Order.buyer_id == buyer.id)).all()) == 3


def test_empty_cart_rejected(client, make_user, headers):
    buyer = make_user()
    r = _checkout(client, headers(buyer))
    assert r.status_code == 400
    body = r.json()
    assert body["code"] == 400301
    assert body["data"]["error"] == "EmptyCart"


def test_unavailable_listing_rejected(
    client, db, make_user, make_listing, add_to_cart, headers
):
    buyer = make_user()
    seller = make_user(UserRole.business)
    listing = make_listing(seller)
    add_to_cart(buyer, listing, 1)
    listing.status = ListingStatus.inactive
    db.add(listing)
    db.commit()

    r = _checkout(client, headers(buyer))
    assert r.status_code == 400
    assert r.json()["code"] == 400302
    assert r.json()["data"]["error"] == "ListingUnavailable"


def test_last_unit_only_one_buyer_wins(
    client, db, make_user, make_listing, add_to_cart, headers
):
    seller = make_user(UserRole.business)
    listing = make_listing(seller, quantity=1)
    first, second = make_user(), make_user()
    add_to_cart(first, listing, 1)
    add_to_cart(second, listing, 1)

    r1 = _checkout(client, headers(first))
    r2 = _checkout(client, headers(second))
    assert r1.status_code == 201
    assert r2.status_code == 400
    assert r2.json()["code"] == 400303
    assert r2.json()["data"]["error"] == "InsufficientStock"
    assert r2.json()["data"]["available"] == 0

    db.expire_all()
    sold = db.get(Listing, listing.id)
    assert sold.quantity == 0
    assert sold.status == ListingStatus.sold
    # 失败的买家购物车保持不变
    assert len(db.exec(select(CartItem).where(CartItem.user_id == second.id)).all()) == 1


def test_conditional_decrement_never_oversells(db, make_user, make_listing):
    seller = make_user(UserRole.business)
    listing = make_listing(seller, quantity=1)

    crud.decrement_listing(session=db, listing_id=listing.id, quantity=1)
    with pytest.raises(InsufficientStock):
        crud.decrement_listing(session=db, listing_id=listing.id, quantity=1)
    with pytest.raises(ListingNotFound):
        crud.decrement_listing(session=db, listing_id=123, quantity=1)
    db.commit()

    db.expire_all()
    assert db.get(Listing, listing.id).quantity == 0


def test_failed_checkout_rolls_back_everything(
    client, db, make_user, make_listing, add_to_cart, headers, monkeypatch
):
    buyer = make_user()
    seller_a = make_user(UserRole.business)
    seller_b = make_user(UserRole.business)
    listing_a = make_listing(seller_a, quantity=5)
    listing_b = make_listing(seller_b, quantity=5)
    add_to_cart(buyer, listing_a, 2)
    add_to_cart(buyer, listing_b, 3)

    real_decrement = crud.decrement_listing
    calls = {"n": 0}

    def _flaky_decrement(*, session, listing_id, quantity):
        calls["n"] += 1
        if calls["n"] == 2:
            # 模拟另一买家在校验之后抢先买走
            raise InsufficientStock(listing_id, requested=quantity, available=0)
        return real_decrement(session=session, listing_id=listing_id, quantity=quantity)

    monkeypatch.setattr("app.crud.decrement_listing", _flaky_decrement)

    r = _checkout(client, headers(buyer))
    assert r.status_code == 400
    assert r.json()["code"] == 400303

    db.expire_all()
    assert db.exec(select(Order)).all() == []
    assert db.exec(select(OrderItem)).all() == []
    assert len(db.exec(select(CartItem).where(CartItem.user_id == buyer.id)).all()) == 2
    assert db.get(Listing, listing_a.id).quantity == 5
    assert db.get(Listing, listing_b.id).quantity == 5


def _place_order(client, make_user, make_listing, add_to_cart, headers, *, quantity=2):
    buyer = make_user()
    seller = make_user(UserRole.business)
    listing = make_listing(seller, quantity=quantity)
    add_to_cart(buyer, listing, quantity)
    r = _checkout(client, headers(buyer))
    assert r.status_code == 201
    return buyer, seller, listing, r.json()["data"][0]


def _set_status(client, user_headers, order_id, status, **extra):
    return client.put(
        f"/api/v1/orders/{order_id}/status",
        headers=user_headers,
        json={"status": status, **extra},
    )


def test_seller_drives_lifecycle(
    client, make_user, make_listing, add_to_cart, headers, fake_redis
):
    buyer, seller, _, order = _place_order(
        client, make_user, make_listing, add_to_cart, headers
    )
    oid = order["id"]

    r = _set_status(client, headers(seller), oid, "confirmed")
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "confirmed"
    assert r.json()["data"]["confirmed_at"] is not None

    assert _set_status(client, headers(seller), oid, "processing").status_code == 200
    r = _set_status(client, headers(seller), oid, "shipped", tracking_number="JNE123")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["tracking_number"] == "JNE123"
    assert data["shipped_at"] is not None

    r = _set_status(client, headers(seller), oid, "delivered")
    assert r.json()["data"]["status"] == "delivered"
    assert r.json()["data"]["delivered_at"] is not None

    updates = fake_redis.events(notifications.ORDER_STATUS_UPDATED)
    assert len(updates) == 4
    assert {u["user_id"] for u in updates} == {str(buyer.id)}


def test_invalid_transition_leaves_status(
    client, db, make_user, make_listing, add_to_cart, headers
):
    _, seller, _, order = _place_order(client, make_user, make_listing, add_to_cart, headers)
    oid = order["id"]

    r = _set_status(client, headers(seller), oid, "delivered")
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == 409301
    assert body["data"] == {
        "error": "InvalidTransition",
        "current": "pending",
        "requested": "delivered",
    }

    db.expire_all()
    assert db.get(Order, oid).status == "pending"


def test_cancel_shipped_order_rejected(
    client, db, make_user, make_listing, add_to_cart, headers
):
    buyer, seller, _, order = _place_order(
        client, make_user, make_listing, add_to_cart, headers
    )
    oid = order["id"]
    for status in ("confirmed", "preparing", "shipped"):
        assert _set_status(client, headers(seller), oid, status).status_code == 200

    r = client.post(
        f"/api/v1/orders/{oid}/cancel", headers=headers(buyer), json={"reason": "changed mind"}
    )
    assert r.status_code == 409
    assert r.json()["data"]["error"] == "InvalidTransition"
    assert r.json()["data"]["current"] == "shipped"

    db.expire_all()
    assert db.get(Order, oid).status == "shipped"


def test_only_seller_advances_status(client, make_user, make_listing, add_to_cart, headers):
    buyer, _, _, order = _place_order(client, make_user, make_listing, add_to_cart, headers)
    r = _set_status(client, headers(buyer), order["id"], "confirmed")
    assert r.status_code == 403
    assert r.json()["code"] == 403001


def test_buyer_cancel_restores_stock(
    client, db, make_user, make_listing, add_to_cart, headers, fake_redis
):
    buyer, seller, listing, order = _place_order(
        client, make_user, make_listing, add_to_cart, headers, quantity=3
    )
    db.expire_all()
    assert db.get(Listing, listing.id).status == ListingStatus.sold

    r = client.post(
        f"/api/v1/orders/{order['id']}/cancel",
        headers=headers(buyer),
        json={"reason": "salah pesan", "notes": "maaf"},
    )
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["status"] == "cancelled"
    assert data["payment_status"] == "cancelled"
    assert data["cancellation_reason"] == "salah pesan"
    assert data["cancelled_at"] is not None

    db.expire_all()
    restored = db.get(Listing, listing.id)
    assert restored.quantity == 3
    assert restored.status == ListingStatus.active

    cancelled = fake_redis.events(notifications.ORDER_CANCELLED)
    assert [c["user_id"] for c in cancelled] == [str(seller.id)]

    # 终态不能再流转
    r = _set_status(client, headers(seller), order["id"], "confirmed")
    assert r.status_code == 409


def test_order_visibility(client, make_user, make_listing, add_to_cart, headers):
    buyer, seller, _, order = _place_order(
        client, make_user, make_listing, add_to_cart, headers
    )
    stranger = make_user()

    for user in (buyer, seller):
        r = client.get(f"/api/v1/orders/{order['id']}", headers=headers(user))
        assert r.status_code == 200
        assert r.json()["data"]["order_number"] == order["order_number"]
        assert len(r.json()["data"]["items"]) == 1

    r = client.get(f"/api/v1/orders/{order['id']}", headers=headers(stranger))
    assert r.status_code == 403

    r = client.get("/api/v1/orders/42", headers=headers(buyer))
    assert r.status_code == 404
    assert r.json()["code"] == 404301


def test_list_orders_filters_and_pagination(
    client, make_user, make_listing, add_to_cart, headers
):
    buyer = make_user()
    seller = make_user(UserRole.business)
    numbers = []
    for _ in range(3):
        add_to_cart(buyer, make_listing(seller), 1)
        r = _checkout(client, headers(buyer))
        numbers.append(r.json()["data"][0]["order_number"])

    r = client.get("/api/v1/orders?page=1&limit=2", headers=headers(buyer))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["count"] == 3
    assert len(data["data"]) == 2
    # 最新的在前
    assert data["data"][0]["order_number"] == numbers[-1]

    r = client.get("/api/v1/orders?page=2&limit=2", headers=headers(buyer))
    assert len(r.json()["data"]["data"]) == 1

    r = client.get(
        f"/api/v1/orders?order_number={numbers[0]}", headers=headers(buyer)
    )
    assert r.json()["data"]["count"] == 1

    r = client.get("/api/v1/orders?role=seller&status=pending", headers=headers(seller))
    assert r.json()["data"]["count"] == 3
    r = client.get("/api/v1/orders?role=seller", headers=headers(buyer))
    assert r.json()["data"]["count"] == 0
    r = client.get("/api/v1/orders?status=shipped", headers=headers(buyer))
    assert r.json()["data"]["count"] == 0


def test_order_stats(client, make_user, make_listing, add_to_cart, headers):
    buyer = make_user()
    seller = make_user(UserRole.business)
    ids = []
    for _ in range(2):
        add_to_cart(buyer, make_listing(seller, price="100000"), 2)
        ids.append(_checkout(client, headers(buyer)).json()["data"][0]["id"])
    client.post(
        f"/api/v1/orders/{ids[1]}/cancel", headers=headers(buyer), json={"reason": "x"}
    )

    r = client.get("/api/v1/orders/stats?role=seller", headers=headers(seller))
    assert r.status_code == 200
    stats = r.json()["data"]
    assert stats["total_orders"] == 2
    assert stats["status_counts"]["pending"] == 1
    assert stats["status_counts"]["cancelled"] == 1
    assert stats["status_counts"]["shipped"] == 0
    assert Decimal(str(stats["total_revenue"])) == Decimal("270000")
    assert Decimal(str(stats["average_order_value"])) == Decimal("270000")


def test_create_order_validation_error(client, make_user, headers):
    buyer = make_user()
    r = client.post(
        "/api/v1/orders",
        headers=headers(buyer),
        json={"shipping_address": {"recipient_name": ""}},
    )
    assert r.status_code == 422
    assert r.json()["code"] == 422000
    assert r.json()["data"]["errors"]


def test_missing_shipping_address_rejected(
    client, db, make_user, make_listing, add_to_cart, headers
):
    buyer = make_user()
    listing = make_listing(make_user(UserRole.business), quantity=5)
    add_to_cart(buyer, listing, 1)

    r = client.post("/api/v1/orders", headers=headers(buyer), json={})
    assert r.status_code == 422
    assert r.json()["code"] == 422000

    # 校验失败不产生任何写入
    db.expire_all()
    assert db.exec(select(Order)).all() == []
    assert db.get(Listing, listing.id).quantity == 5
    assert len(db.exec(select(CartItem).where(CartItem.user_id == buyer.id)).all()) == 1


def test_auth_required(client, make_user, headers, db):
    r = client.get("/api/v1/orders")
    assert r.status_code in (401, 403)

    r = client.get("/api/v1/orders", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["code"] == 401000

    user = make_user()
    user.is_active = False
    db.add(user)
    db.commit()
    r = client.get("/api/v1/orders", headers=headers(user))
    assert r.status_code == 403
