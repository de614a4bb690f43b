"""
购物车快照 CRUD 操作

下单时读取买家购物车，并与商品当前状态合并成不可变的 CartLine 快照；
单价取自商品当前价格，而不是加入购物车时的价格。
"""
from dataclasses import dataclass
from decimal import Decimal

from sqlmodel import Session, delete, select

from app.api.errors import InsufficientStock, ListingUnavailable
from app.enums import ListingStatus
from app.models import CartItem, Listing, utc_now


@dataclass(frozen=True)
class CartLine:
    """购物车条目快照"""
    cart_item_id: int
    listing_id: int
    seller_id: int
    title: str
    waste_type: str
    unit: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


def read_cart_snapshot(*, session: Session, buyer_id: int) -> list[CartLine]:
    """
    读取买家购物车快照（只读）

    按加入购物车的先后顺序返回；遇到第一个不合法的条目立即报错。

    Raises:
        ListingUnavailable: 商品不存在、已下架或已停用
        InsufficientStock: 商品剩余数量小于购物车数量（包括已售罄）
    """
    stmt = (
        select(CartItem, Listing)
        .join(Listing, Listing.id == CartItem.listing_id, isouter=True)
        .where(CartItem.user_id == buyer_id)
        .order_by(CartItem.created_at, CartItem.id)
    )
    lines: list[CartLine] = []
    for item, listing in session.exec(stmt).all():
        # 售罄（sold）按库存不足处理
        if (
            listing is None
            or listing.status not in (ListingStatus.active, ListingStatus.sold)
            or not listing.is_active
        ):
            raise ListingUnavailable(
                item.listing_id, title=listing.title if listing else None
            )
        if listing.quantity < item.quantity:
            raise InsufficientStock(
                listing.id,
                title=listing.title,
                requested=item.quantity,
                available=listing.quantity,
            )
        lines.append(
            CartLine(
                cart_item_id=item.id,
                listing_id=listing.id,
                seller_id=listing.seller_id,
                title=listing.title,
                waste_type=listing.waste_type,
                unit=listing.unit,
                quantity=item.quantity,
                unit_price=Decimal(listing.price_per_unit),
            )
        )
    return lines


def clear_cart(*, session: Session, buyer_id: int) -> None:
    """清空买家购物车（不提交事务）"""
    session.exec(delete(CartItem).where(CartItem.user_id == buyer_id))


def add_cart_item(
    *,
    session: Session,
    user_id: int,
    listing: Listing,
    quantity: int,
    notes: str | None = None,
) -> CartItem:
    """
    加入购物车

    购物车编辑属于商品服务，这里只用于初始化数据和测试。
    同一商品重复加入时累加数量。
    """
    item = session.exec(
        select(CartItem).where(
            CartItem.user_id == user_id, CartItem.listing_id == listing.id
        )
    ).first()
    if item:
        item.quantity += quantity
        item.updated_at = utc_now()
    else:
        item = CartItem(user_id=user_id, listing_id=listing.id, quantity=quantity, notes=notes)
    item.price_per_unit = listing.price_per_unit
    item.total_price = Decimal(listing.price_per_unit) * item.quantity
    session.add(item)
    session.commit()
    session.refresh(item)
    return item
