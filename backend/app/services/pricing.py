"""
订单计价

运费按数量分档：每 SHIPPING_BAND_SIZE 个单位（不足一档按一档）收取 SHIPPING_COST_PER_BAND；
税费按固定税率计算，四舍五入到 2 位小数。
"""
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from app.core.config import settings

_CENT = Decimal("0.01")


def quantize_money(value: Decimal) -> Decimal:
    """金额保留 2 位小数（四舍五入）"""
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    shipping_cost: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def shipping_cost(total_quantity: int) -> Decimal:
    """计算分档运费，数量为 0 时运费为 0"""
    if total_quantity <= 0:
        return quantize_money(Decimal("0"))
    bands = math.ceil(total_quantity / settings.SHIPPING_BAND_SIZE)
    return quantize_money(settings.SHIPPING_COST_PER_BAND * bands)


def tax_amount(subtotal: Decimal) -> Decimal:
    return quantize_money(subtotal * settings.TAX_RATE)


def compute_totals(*, subtotal: Decimal, total_quantity: int) -> OrderTotals:
    """
    计算订单金额

    total_amount 恒等于 subtotal + shipping_cost + tax_amount。

    示例（默认配置）：2 件 × 100000 → 小计 200000，运费 50000，税 20000，合计 270000
    """
    subtotal = quantize_money(subtotal)
    shipping = shipping_cost(total_quantity)
    tax = tax_amount(subtotal)
    return OrderTotals(
        subtotal=subtotal,
        shipping_cost=shipping,
        tax_amount=tax,
        total_amount=subtotal + shipping + tax,
    )
