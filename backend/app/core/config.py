"""
应用配置模块

使用 Pydantic Settings 管理所有环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

关键概念：
- BaseSettings: Pydantic 的配置基类，自动从环境变量读取
- computed_field: 计算字段，根据其他字段动态生成
- model_validator: 模型验证器，用于自定义验证逻辑
"""
import secrets  # 用于生成安全的随机字符串
import warnings  # 用于发出警告
from decimal import Decimal  # 金额与税率使用 Decimal
from typing import Annotated, Any, Literal  # 类型注解工具

from pydantic import (
    AnyUrl,  # URL 类型验证
    BeforeValidator,  # 字段验证前的转换器
    HttpUrl,  # HTTP URL 类型验证
    PostgresDsn,  # PostgreSQL 连接字符串验证
    computed_field,  # 计算字段装饰器
    model_validator,  # 模型验证器装饰器
)
from pydantic_settings import BaseSettings, SettingsConfigDict  # 配置管理
from typing_extensions import Self  # 用于类型注解中引用自身类型


def parse_cors(v: Any) -> list[str] | str:
    """
    解析 CORS 配置值

    支持逗号分隔的字符串或列表格式。

    Raises:
        ValueError: 当输入格式不正确时
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        # 使用项目根目录的 .env 文件（backend/ 目录的上一级）
        env_file="../.env",
        env_ignore_empty=True,  # 忽略空的环境变量
        extra="ignore",  # 忽略未定义的额外字段
    )
    API_V1_STR: str = "/api/v1"  # API 版本前缀
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT 签名密钥（默认随机生成）
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7  # JWT token 过期天数
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """CORS 允许的源列表（去除尾部斜杠）"""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    PROJECT_NAME: str = "Sirkulo Marketplace"
    SENTRY_DSN: HttpUrl | None = None

    # Snowflake
    SNOWFLAKE_NODE_ID: int = 0

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = "sirkulo"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Redis 配置（通知事件流）
    REDIS_HOST: str = "localhost"  # Redis 服务器地址
    REDIS_PORT: int = 6379  # Redis 端口
    REDIS_DB: int = 0  # Redis 数据库编号（0-15）
    REDIS_PASSWORD: str | None = None  # Redis 密码（可选）
    NOTIFICATION_STREAM: str = "marketplace_notifications"  # 通知服务消费的 Stream 名称

    # 订单计价策略
    TAX_RATE: Decimal = Decimal("0.10")  # 固定税率（10%）
    SHIPPING_BAND_SIZE: int = 100  # 运费分档大小（每 100 单位一档）
    SHIPPING_COST_PER_BAND: Decimal = Decimal("50000")  # 每档运费

    # 支付配置
    PAYMENT_CURRENCY: str = "IDR"  # 结算币种
    PAYMENT_EXPIRY_SECONDS: int = 24 * 60 * 60  # 网关未返回过期时间时的默认有效期（24 小时）
    PAYMENT_SUCCESS_REDIRECT_URL: str | None = None  # 收银台支付成功跳转地址
    PAYMENT_FAILURE_REDIRECT_URL: str | None = None  # 收银台支付失败跳转地址

    # Xendit 支付网关配置
    PAYMENT_GATEWAY_MOCK: bool = True  # 是否使用模拟模式（本地开发时）
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 30.0  # 网关请求超时时间（秒）
    XENDIT_BASE_URL: str = "https://api.xendit.co"  # API 基础 URL
    XENDIT_SECRET_KEY: str | None = None  # API 密钥
    XENDIT_CALLBACK_TOKEN: str | None = None  # Webhook 回调校验 token

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值 "changethis"

        本地环境只警告，其他环境直接报错。

        Raises:
            ValueError: 在非本地环境使用默认值时
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        """配置加载完成后检查关键安全配置"""
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("XENDIT_SECRET_KEY", self.XENDIT_SECRET_KEY)

        return self


# 创建全局配置实例，整个应用共享
settings = Settings()  # type: ignore
