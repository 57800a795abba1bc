from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

# Native USDC on Polygon PoS
POLYGON_USDC_ADDRESS = "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    DATABASE_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # Polygon RPC (Alchemy)
    POLYGON_RPC_URL: str = ""
    ALCHEMY_API_KEY: str = ""
    ALCHEMY_WEBHOOK_SIGNING_KEY: str = ""

    # Custody
    PLATFORM_WALLET_ADDRESS: str = ""
    HOT_WALLET_PRIVATE_KEY: str = ""
    CRON_SECRET: str = ""

    USDC_CONTRACT_ADDRESS: str = POLYGON_USDC_ADDRESS
    USDC_DECIMALS: int = 6
    CHAIN_ID: int = 137

    DEPOSIT_MATCH_TOLERANCE: Decimal = Decimal("0.01")
    TRANSFER_CONFIRM_TIMEOUT_SECONDS: float = 45.0
    TRANSFER_POLL_INTERVAL_SECONDS: float = 2.0
    WITHDRAWAL_RUN_BUDGET_SECONDS: float = 55.0
    WITHDRAWAL_SCHEDULE_MINUTES: int = 0
    STUCK_PROCESSING_MINUTES: int = 30

    CORS_ORIGINS: str = ""

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v):
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def rpc_url(self) -> str:
        if self.POLYGON_RPC_URL:
            return self.POLYGON_RPC_URL
        if not self.ALCHEMY_API_KEY:
            return ""
        return f"https://polygon-mainnet.g.alchemy.com/v2/{self.ALCHEMY_API_KEY}"

settings = Settings()
