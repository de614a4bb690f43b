from __future__ import annotations

from collections.abc import Callable, Generator
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, delete

from app import crud
from app.api.deps import get_db
from app.core import security
from app.enums import UserRole
from app.integrations.xendit import XenditGateway, get_payment_gateway
from app.main import app
from app.models import (
    CartItem,
    Listing,
    Order,
    OrderItem,
    Payment,
    Refund,
    User,
)


class _FakeRedis:
    def __init__(self) -> None:
        self.messages: list[tuple[str, dict[str, str]]] = []

    def xadd(self, name: str, fields: dict[str, str]) -> str:  # type: ignore[override]
        self.messages.append((name, fields))
        return f"{len(self.messages)}-0"

    def events(self, event: str | None = None) -> list[dict[str, str]]:
        return [f for _, f in self.messages if event is None or f["event"] == event]


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        # Clean tables after each test (children first).
        session.rollback()
        session.exec(delete(Refund))
        session.exec(delete(Payment))
        session.exec(delete(OrderItem))
        session.exec(delete(Order))
        session.exec(delete(CartItem))
        session.exec(delete(Listing))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> _FakeRedis:
    fake = _FakeRedis()
    monkeypatch.setattr("app.services.notifications.get_redis", lambda: fake)
    return fake


@pytest.fixture(scope="function")
def client(engine) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: XenditGateway(mock=True)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db) -> Callable[..., User]:
    counter = {"n": 0}

    def _make(role: UserRole = UserRole.user, *, full_name: str | None = None) -> User:
        counter["n"] += 1
        return crud.create_user(
            session=db,
            email=f"{role.value}{counter['n']}@example.com",
            full_name=full_name,
            role=role,
        )

    return _make


@pytest.fixture
def make_listing(db) -> Callable[..., Listing]:
    def _make(
        seller: User,
        *,
        price: str = "100000",
        quantity: int = 10,
        title: str = "PET Bottles",
        **kwargs,
    ) -> Listing:
        listing = Listing(
            seller_id=seller.id,
            title=title,
            waste_type=kwargs.pop("waste_type", "plastic"),
            price_per_unit=Decimal(price),
            quantity=quantity,
            **kwargs,
        )
        db.add(listing)
        db.commit()
        db.refresh(listing)
        return listing

    return _make


@pytest.fixture
def add_to_cart(db) -> Callable[..., CartItem]:
    def _add(buyer: User, listing: Listing, quantity: int) -> CartItem:
        return crud.add_cart_item(
            session=db, user_id=buyer.id, listing=listing, quantity=quantity
        )

    return _add


def auth_headers(user: User) -> dict[str, str]:
    token = security.create_access_token(user.id, timedelta(days=1))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers() -> Callable[[User], dict[str, str]]:
    return auth_headers
