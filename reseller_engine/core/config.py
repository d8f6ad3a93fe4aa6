import logging
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("reseller_engine.config")

MIB = 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./reseller_engine.db"
    PANEL_CREDENTIALS_FERNET_KEY: Optional[str] = None  # Generated below when missing
    ADMIN_API_KEY: Optional[str] = None
    LOG_LEVEL: str = "INFO"
    PANEL_REQUEST_TIMEOUT: int = 15

    # Reseller-level quota grace
    RESELLER_GRACE_PERCENT: float = 2.0
    RESELLER_GRACE_BYTES: int = 50 * MIB
    # Per-config grace, only used when configs may not overrun their own limit
    CONFIG_GRACE_PERCENT: float = 2.0
    CONFIG_GRACE_BYTES: int = 50 * MIB
    ALLOW_CONFIG_OVERRUN: bool = True

    WALLET_PRICE_PER_GB: Decimal = Decimal("780")
    WALLET_SUSPENSION_THRESHOLD: Decimal = Decimal("-1000")
    WALLET_CHARGE_ENABLED: bool = True
    WALLET_CHARGE_IDEMPOTENCY_SECONDS: int = 50
    WALLET_MINIMUM_DELTA_BYTES: int = 0
    WALLET_CHARGE_LOCK_TTL_SECONDS: int = 120
    WALLET_AUTO_REENABLE_ENABLED: bool = True

    MULTI_PANEL_USAGE_ENABLED: bool = True


settings = Settings()

# A generated key only lives for this process; encrypted panel secrets written
# with it cannot be read after a restart.
if settings.PANEL_CREDENTIALS_FERNET_KEY is None:
    from cryptography.fernet import Fernet
    settings.PANEL_CREDENTIALS_FERNET_KEY = Fernet.generate_key().decode()
    logger.warning(
        "PANEL_CREDENTIALS_FERNET_KEY is not set; generated an ephemeral key. "
        "Store a persistent key in the environment or .env file."
    )


class EngineConfig(BaseModel):
    """Engine options resolved once per run and handed to every component."""

    model_config = ConfigDict(frozen=True)

    reseller_grace_percent: float = 2.0
    reseller_grace_bytes: int = 50 * MIB
    config_grace_percent: float = 2.0
    config_grace_bytes: int = 50 * MIB
    allow_config_overrun: bool = True
    wallet_price_per_gb: Decimal = Decimal("780")
    wallet_suspension_threshold: Decimal = Decimal("-1000")
    wallet_charge_enabled: bool = True
    wallet_charge_idempotency_seconds: int = 50
    wallet_minimum_delta_bytes: int = 0
    wallet_charge_lock_ttl_seconds: int = 120
    wallet_auto_reenable_enabled: bool = True
    multi_panel_usage_enabled: bool = True
    panel_request_timeout: int = 15

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "EngineConfig":
        source = source or settings
        return cls(
            reseller_grace_percent=source.RESELLER_GRACE_PERCENT,
            reseller_grace_bytes=source.RESELLER_GRACE_BYTES,
            config_grace_percent=source.CONFIG_GRACE_PERCENT,
            config_grace_bytes=source.CONFIG_GRACE_BYTES,
            allow_config_overrun=source.ALLOW_CONFIG_OVERRUN,
            wallet_price_per_gb=source.WALLET_PRICE_PER_GB,
            wallet_suspension_threshold=source.WALLET_SUSPENSION_THRESHOLD,
            wallet_charge_enabled=source.WALLET_CHARGE_ENABLED,
            wallet_charge_idempotency_seconds=source.WALLET_CHARGE_IDEMPOTENCY_SECONDS,
            wallet_minimum_delta_bytes=source.WALLET_MINIMUM_DELTA_BYTES,
            wallet_charge_lock_ttl_seconds=source.WALLET_CHARGE_LOCK_TTL_SECONDS,
            wallet_auto_reenable_enabled=source.WALLET_AUTO_REENABLE_ENABLED,
            multi_panel_usage_enabled=source.MULTI_PANEL_USAGE_ENABLED,
            panel_request_timeout=source.PANEL_REQUEST_TIMEOUT,
        )
