from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    DATABASE_URL: str
    REDIS_URL: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    # Fernet key wrapping every custodial wallet secret
    KEY_ENCRYPTION_KEY: str

    # Solana
    SOLANA_RPC_URL: str = "https://api.devnet.solana.com"
    SOLANA_CLUSTER: str = "devnet"
    NETWORK_FEE_SOL: Decimal = Decimal("0.000005")

    # Jupiter price / quote / swap API
    JUPITER_BASE_URL: str = "https://lite-api.jup.ag"
    JUPITER_API_KEY: str = ""
    PRICE_CACHE_TTL_SEC: int = 10
    PRICE_REFRESH_INTERVAL_SEC: int = 60

    # Trading
    PLATFORM_FEE_BPS: int = 10
    # owner of the token accounts Jupiter pays the platform fee into; no fee without it
    PLATFORM_FEE_ACCOUNT: str = ""
    DEFAULT_SLIPPAGE_BPS: int = 100
    MAX_SLIPPAGE_BPS: int = 5000

    # Confirmation polling
    POLL_INITIAL_DELAY_SEC: float = 0.0
    POLL_INTERVAL_SEC: float = 3.0
    POLL_BACKOFF_FACTOR: float = 1.5
    POLL_MAX_INTERVAL_SEC: float = 15.0
    POLL_MAX_ATTEMPTS: int = 20

    # Reconciliation of trades stuck in pending
    RECONCILE_INTERVAL_SEC: int = 60
    RECONCILE_AFTER_SEC: int = 120
    PENDING_EXPIRY_SEC: int = 600

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v):
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def platform_fee_bps(self) -> int:
        return self.PLATFORM_FEE_BPS if self.PLATFORM_FEE_ACCOUNT else 0

    @property
    def fee_rate(self) -> Decimal:
        return Decimal(self.platform_fee_bps) / Decimal(10_000)

    @property
    def is_mainnet(self) -> bool:
        return self.SOLANA_CLUSTER.startswith("mainnet")

settings = Settings()
