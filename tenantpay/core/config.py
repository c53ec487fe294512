import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database (unset = in-memory stores)
    DATABASE_URL: Optional[str] = None

    # Owner side
    OWNER_ID: str = "owner"
    OWNER_KEY: Optional[str] = None  # X-Owner-Key for owner endpoints
    OWNER_INBOX_URL: Optional[str] = None  # POST target; unset = in-memory inbox

    # Admin identity header (set by the upstream auth proxy)
    ADMIN_ID_HEADER: str = "x-admin-id"

    # Notifications
    NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    # Verification codes (0 = no limit)
    VERIFICATION_CODE_TTL_SECONDS: int = 0
    VERIFICATION_MAX_ATTEMPTS: int = 0

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()


def required_settings(cfg: Settings) -> List[str]:
    names = ["OWNER_KEY"]
    if cfg.ENV.lower() == "production":
        # in-memory stores lose every subscription on restart
        names.append("DATABASE_URL")
    return names


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Check that required settings are present.

    Strict mode raises RuntimeError, otherwise a warning naming the missing
    keys is logged. Values are never logged.
    """
    cfg = settings_obj or settings
    if strict is None:
        strict = cfg.CONFIG_STRICT

    missing = [name for name in required_settings(cfg) if not getattr(cfg, name, None)]
    if not missing:
        return True

    message = "Missing required configuration: " + ", ".join(missing)
    if strict:
        raise RuntimeError(message)
    (logger or logging.getLogger("tenantpay")).warning(message)
    return True
