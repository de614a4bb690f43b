"""CRUD 操作模块"""
from .cart import CartLine, add_cart_item, clear_cart, read_cart_snapshot
from .inventory import decrement_listing, restore_listing
from .user import create as create_user

__all__ = [
    "CartLine",
    "add_cart_item",
    "clear_cart",
    "read_cart_snapshot",
    "decrement_listing",
    "restore_listing",
    "create_user",
]
