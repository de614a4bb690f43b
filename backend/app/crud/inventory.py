"""
库存台账 CRUD 操作

库存扣减是带条件的 UPDATE（quantity >= n），由数据库保证同一商品不会超卖；
这里的函数都不提交事务，由调用方在整笔业务完成后统一 commit。
"""
import logging

from sqlalchemy import update
from sqlmodel import Session

from app.api.errors import InsufficientStock, ListingNotFound
from app.enums import ListingStatus
from app.models import Listing, utc_now

logger = logging.getLogger(__name__)


def decrement_listing(*, session: Session, listing_id: int, quantity: int) -> None:
    """
    扣减商品库存

    使用条件更新保证并发安全：两个买家同时购买最后一件时只有一个能成功。
    库存扣到 0 时商品状态改为 sold。

    Raises:
        ListingNotFound: 商品不存在
        InsufficientStock: 剩余库存不足 quantity
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    now = utc_now()
    result = session.exec(
        update(Listing)
        .where(Listing.id == listing_id, Listing.quantity >= quantity)
        .values(quantity=Listing.quantity - quantity, updated_at=now)
    )
    if result.rowcount == 0:
        # 读取最新值，区分"不存在"和"不足"
        listing = session.get(Listing, listing_id, populate_existing=True)
        if not listing:
            raise ListingNotFound(listing_id)
        raise InsufficientStock(
            listing_id,
            title=listing.title,
            requested=quantity,
            available=listing.quantity,
        )

    session.exec(
        update(Listing)
        .where(
            Listing.id == listing_id,
            Listing.quantity == 0,
            Listing.status == ListingStatus.active.value,
        )
        .values(status=ListingStatus.sold.value, updated_at=now)
    )
    logger.debug(f"Listing {listing_id} decremented by {quantity}")


def restore_listing(*, session: Session, listing_id: int, quantity: int) -> None:
    """
    归还商品库存（取消订单时调用）

    因售罄而变为 sold 的商品恢复为 active；其他状态（下架、归档）保持不变。

    Raises:
        ListingNotFound: 商品不存在
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    now = utc_now()
    result = session.exec(
        update(Listing)
        .where(Listing.id == listing_id)
        .values(quantity=Listing.quantity + quantity, updated_at=now)
    )
    if result.rowcount == 0:
        raise ListingNotFound(listing_id)

    session.exec(
        update(Listing)
        .where(Listing.id == listing_id, Listing.status == ListingStatus.sold.value)
        .values(status=ListingStatus.active.value, updated_at=now)
    )
    logger.debug(f"Listing {listing_id} restored by {quantity}")
