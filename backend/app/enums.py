"""
枚举类型定义模块

定义订单、支付、退款以及外部协作方（用户、商品）使用的枚举类型。
所有枚举都继承自 str 和 Enum，这样既可以用作字符串，又具有枚举的特性。
"""
from enum import Enum  # 枚举类型，用于定义固定的选项集合


class UserRole(str, Enum):
    """
    用户角色枚举

    - user: 普通用户（买家）
    - recycler: 回收商（买家）
    - business: 企业（卖家，发布废料商品）
    - admin: 管理员
    """
    user = "user"
    recycler = "recycler"
    business = "business"
    admin = "admin"


class ListingStatus(str, Enum):
    """
    商品状态枚举

    只有 active 状态的商品可以下单。
    """
    draft = "draft"
    active = "active"
    inactive = "inactive"
    sold = "sold"
    archived = "archived"


class OrderStatus(str, Enum):
    """
    订单状态枚举

    合法的状态流转见 app/services/order_state.py 中的流转表。
    cancelled 与 refunded 为终态。
    """
    pending = "pending"
    confirmed = "confirmed"
    preparing = "preparing"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"
    refunded = "refunded"


class OrderPaymentStatus(str, Enum):
    """
    订单上的资金状态枚举

    与订单状态分开维护，允许滞后于订单状态
    （例如订单已确认，但资金仍在结算中）。
    """
    pending = "pending"
    paid = "paid"
    failed = "failed"
    expired = "expired"
    refunded = "refunded"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    """
    支付记录状态枚举（网关侧词汇）

    - PENDING: 等待买家付款
    - PAID: 已付款
    - SETTLED: 已结算
    - EXPIRED: 已过期
    - FAILED: 支付失败
    """
    PENDING = "PENDING"
    PAID = "PAID"
    SETTLED = "SETTLED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class PaymentChannel(str, Enum):
    """
    支付渠道枚举

    - BANK_TRANSFER / VIRTUAL_ACCOUNT: 银行虚拟账户转账
    - EWALLET: 电子钱包（OVO、DANA 等）
    - RETAIL_OUTLET: 便利店柜台付款码
    - CREDIT_CARD: 银行卡（通过托管收银台跳转）
    """
    BANK_TRANSFER = "BANK_TRANSFER"
    EWALLET = "EWALLET"
    RETAIL_OUTLET = "RETAIL_OUTLET"
    CREDIT_CARD = "CREDIT_CARD"
    VIRTUAL_ACCOUNT = "VIRTUAL_ACCOUNT"


class BankCode(str, Enum):
    """虚拟账户支持的银行"""
    BCA = "BCA"
    BNI = "BNI"
    BRI = "BRI"
    MANDIRI = "MANDIRI"
    PERMATA = "PERMATA"
    BSI = "BSI"


class EwalletType(str, Enum):
    """支持的电子钱包"""
    OVO = "OVO"
    DANA = "DANA"
    LINKAJA = "LINKAJA"
    SHOPEEPAY = "SHOPEEPAY"
    GOPAY = "GOPAY"


class RetailOutlet(str, Enum):
    """支持的便利店"""
    ALFAMART = "ALFAMART"
    INDOMARET = "INDOMARET"


class RefundStatus(str, Enum):
    """
    退款状态枚举

    - PENDING: 网关已受理，等待完成
    - COMPLETED: 退款完成
    - FAILED: 退款失败
    """
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
