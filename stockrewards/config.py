from decimal import Decimal
from functools import lru_cache
from typing import Dict, Optional
from urllib.parse import quote_plus

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_BASE_PRICES: Dict[str, Decimal] = {
    "RELIANCE": Decimal("2500"),
    "TCS": Decimal("3500"),
    "INFOSYS": Decimal("1500"),
    "HDFC": Decimal("1600"),
    "ICICIBANK": Decimal("900"),
    "BHARTIARTL": Decimal("800"),
    "ITC": Decimal("400"),
    "SBIN": Decimal("500"),
    "KOTAKBANK": Decimal("1800"),
    "LT": Decimal("3000"),
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="stockrewards/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Stock Rewards Ledger API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    POSTGRES_HOST: str = ""
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = ""
    SQLITE_PATH: str = "./stockrewards.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """DATABASE_URL > POSTGRES_* > 로컬 SQLite 순으로 연결 문자열을 결정"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        if self.POSTGRES_HOST:
            # URL encode the password to handle special characters
            encoded_password = quote_plus(self.POSTGRES_PASSWORD)
            return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

        return f"sqlite:///{self.SQLITE_PATH}"

    # Fees (INR 거래 금액 대비 비율)
    BROKERAGE_RATE: Decimal = Decimal("0.001")  # 0.1%
    STT_RATE: Decimal = Decimal("0.00025")  # 0.025%
    GST_RATE: Decimal = Decimal("0.18")  # 18% on brokerage
    STAMP_DUTY_RATE: Decimal = Decimal("0")
    SEBI_FEE_RATE: Decimal = Decimal("0")
    EXCHANGE_FEE_RATE: Decimal = Decimal("0")

    # Price oracle
    PRICE_CACHE_TTL_SECONDS: float = 300.0
    PRICE_HISTORY_VOLATILITY: Decimal = Decimal("0.02")
    PRICE_BASE_VOLATILITY: Decimal = Decimal("0.05")
    DEFAULT_BASE_PRICE: Decimal = Decimal("1000")
    MIN_PRICE: Decimal = Decimal("1")
    BASE_PRICES: Dict[str, Decimal] = Field(
        default_factory=lambda: dict(DEFAULT_BASE_PRICES)
    )

    # Corporate actions
    CORPORATE_ACTION_CLAIM_TIMEOUT_SECONDS: float = 900.0  # PENDING 선점 유효 시간

    # Ledger
    LEDGER_TOLERANCE: Decimal = Decimal("0.0001")

    # Timezone
    TIMEZONE: str = "Asia/Kolkata"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings instance."""

    return Settings()


settings = get_settings()
