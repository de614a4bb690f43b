"""
商品与购物车模型模块

商品（废料挂牌）和购物车由商品服务维护，
本服务只读取它们，并通过库存台账（app/crud/inventory.py）增减库存、
在下单成功后清空购物车。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import ListingStatus

from .base import money_column, utc_now


class Listing(SQLModel, table=True):
    """
    废料商品模型

    字段说明：
    - seller_id: 发布商品的企业用户 ID
    - title / waste_type / unit: 商品名称、废料类型、计量单位
    - price_per_unit: 当前单价（下单时复制到订单明细，之后改价不影响订单）
    - quantity: 可售数量（整数单位）
    - status: 商品状态，只有 active 可下单
    """
    __tablename__ = "listings"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    seller_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    title: str = Field(max_length=255)
    waste_type: str = Field(default="other", max_length=50)
    unit: str = Field(default="kg", max_length=20)
    price_per_unit: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    quantity: int = Field(default=0, sa_column=Column(Integer, nullable=False))
    status: ListingStatus = Field(
        default=ListingStatus.active,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    is_active: bool = Field(default=True)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class CartItem(SQLModel, table=True):
    """
    购物车条目模型

    同一用户对同一商品只有一条记录（user_id + listing_id 唯一）。
    """
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("user_id", "listing_id", name="uq_cart_items_user_listing"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    listing_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
        )
    )
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    price_per_unit: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    total_price: Decimal = Field(default=Decimal("0.00"), sa_column=money_column())
    notes: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
