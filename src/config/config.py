from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class JWTConfig(BaseModel):
    """JWT Config needed for merchant authentication"""

    JWT_SECRET: str
    ALGORITHM: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int


class GatewayConfig(BaseModel):
    """Settings for the Mercado Pago client"""

    base_url: str
    timeout: float
    app_url: str
    currency: str
    excluded_payment_methods: List[str]
    validity_hours: int

    @property
    def notification_url(self) -> str:
        return f"{self.app_url}/webhooks/payment-gateway"


class Config(BaseSettings):
    """Config settings"""

    ENV: str = "development"

    # Logging
    CONSOLE_LOG_LEVEL: Optional[str] = None
    FILE_LOG_LEVEL: str = "DEBUG"
    ERROR_LOG_LEVEL: str = "ERROR"
    LOG_DIR: Optional[str] = "logs"

    # JWT
    JWT_SECRET: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Credential encryption (64 hex chars = 32 bytes)
    ENCRYPTION_KEY: str

    # Postgres (optional, SQLite is used when POSTGRES_HOST is not set)
    POSTGRES_HOST: Optional[str] = None
    POSTGRES_USER: Optional[str] = None
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: Optional[str] = None
    SQLITE_URL: str = "sqlite:///./payment_links.db"

    # Public URL of this service, used for gateway callbacks and redirects
    APP_URL: str = "http://localhost:8000"
    CORS_ORIGINS: str = "*"

    # Mercado Pago
    GATEWAY_BASE_URL: str = "https://api.mercadopago.com"
    GATEWAY_TIMEOUT_SECONDS: float = 5.0
    GATEWAY_TEST_MODE: bool = False
    GATEWAY_CURRENCY: str = "BRL"
    GATEWAY_EXCLUDED_PAYMENT_METHODS: List[str] = ["bolbradesco"]

    # Payment links
    LINK_VALIDITY_HOURS: int = 24

    # Server-sent events
    SSE_HEARTBEAT_SECONDS: float = 30.0

    @property
    def DATABASE_URL(self) -> str:
        """Method to return Database url"""
        if self.POSTGRES_HOST:
            return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}/{self.POSTGRES_DB}"
        return self.SQLITE_URL

    @property
    def jwt_config(self) -> JWTConfig:
        """Method to return JWT Config"""
        return JWTConfig(
            JWT_SECRET=self.JWT_SECRET,
            ALGORITHM=self.ALGORITHM,
            ACCESS_TOKEN_EXPIRE_MINUTES=self.ACCESS_TOKEN_EXPIRE_MINUTES,
        )

    @property
    def gateway_config(self) -> GatewayConfig:
        """Method to return the Mercado Pago client config"""
        return GatewayConfig(
            base_url=self.GATEWAY_BASE_URL,
            timeout=self.GATEWAY_TIMEOUT_SECONDS,
            app_url=self.APP_URL.rstrip("/"),
            currency=self.GATEWAY_CURRENCY,
            excluded_payment_methods=self.GATEWAY_EXCLUDED_PAYMENT_METHODS,
            validity_hours=self.LINK_VALIDITY_HOURS,
        )

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parent.parent.parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


config = Config()
