import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Dict, Optional


DEFAULT_TIER_THRESHOLDS: Dict[str, float] = {
    "Diamond": 0.95,
    "Platinum": 0.85,
    "Gold": 0.70,
    "Silver": 0.50,
}


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database & Cache
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379"

    # Auth
    JWT_SECRET_KEY: Optional[str] = None
    ALLOW_USER_ID_HEADER: bool = True  # X-User-Id fallback (dev/tests)

    # Admin access
    ADMIN_KEY: Optional[str] = None
    ADMIN_AUTH_MODE: str = "hybrid"  # "jwt" | "legacy" | "hybrid"
    ENVIRONMENT: str = "dev"  # "dev" | "test" | "prod"

    # Ranking engine
    RANKING_UPDATE_POLICY: str = "immediate"  # "immediate" | "deferred"
    RECALC_TIMEOUT_SECONDS: float = 30.0
    RECALC_INTERVAL_SECONDS: float = 0.0  # 0 = background scheduler disabled
    RECALC_QUEUE_ENABLED: bool = False
    WEEKLY_WINDOW_DAYS: int = 7
    MONTHLY_WINDOW_DAYS: int = 30
    TIER_THRESHOLDS: Dict[str, float] = dict(DEFAULT_TIER_THRESHOLDS)
    LEADERBOARD_DEFAULT_LIMIT: int = 50
    LEADERBOARD_MAX_LIMIT: int = 1000
    SNAPSHOT_REFRESH_SECONDS: float = 2.0  # how often a database-backed API re-reads published snapshots

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_PER_MINUTE_DEFAULT: int = 120
    RATE_LIMIT_BURST_DEFAULT: int = 30

    # Websocket
    WS_MAX_SOCKETS_PER_COHORT: int = 0  # 0 = disabled
    WS_PUSH_LIMIT: int = 50  # entries per pushed snapshot

    # App
    CORS_ORIGINS: str = "http://localhost:3000"  # comma-separated

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("liftrank")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "JWT_SECRET_KEY",
        "ADMIN_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    problems = []
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")

    policy = str(getattr(cfg, "RANKING_UPDATE_POLICY", "immediate")).lower()
    if policy not in {"immediate", "deferred"}:
        problems.append(f"RANKING_UPDATE_POLICY must be 'immediate' or 'deferred', got {policy!r}")

    for message in problems:
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    # Not an error, but nothing re-ranks until an explicit recalculation
    if policy == "deferred" and float(getattr(cfg, "RECALC_INTERVAL_SECONDS", 0) or 0) <= 0:
        log.warning(
            "RANKING_UPDATE_POLICY=deferred with RECALC_INTERVAL_SECONDS=0: "
            "leaderboards only change on POST /api/recalculate-rankings"
        )

    return True
