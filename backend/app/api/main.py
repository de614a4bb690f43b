"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（app/main.py）上。

路由模块说明：
- orders: 订单相关（下单、查询、状态流转、取消）
- payments: 支付相关（发起支付、退款、网关回调）
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from app.api.routes import (
    orders,  # 订单路由
    payments,  # 支付路由
    utils,  # 工具路由
)

# 创建主 API 路由器
api_router = APIRouter()

# 注册所有业务路由模块
# 每个模块的路径前缀在各自的 router 中定义
api_router.include_router(orders.router)  # /orders/*
api_router.include_router(payments.router)  # /payments/*
api_router.include_router(utils.router)  # /utils/*
