import logging
from typing import List, Optional

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """PlanSync settings, read from the environment and an optional .env file."""

    ENV: str = "development"  # "development" | "test" | "production"
    CONFIG_STRICT: bool = False

    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Reconciliation tuning
    PLAN_STORE_CALL_TIMEOUT_SECONDS: float = 5.0
    PLAN_REPAIR_CONCURRENCY: int = 4
    PLAN_REPAIR_ITEM_TIMEOUT_SECONDS: float = 30.0
    PLAN_EMERGENCY_BYPASS_ENABLED: bool = True
    PLAN_SESSION_CACHE_TTL_SECONDS: int = 300

    # Clerk session tokens
    CLERK_SECRET_KEY: Optional[str] = None
    CLERK_ISSUER: Optional[str] = None
    CLERK_AUDIENCE: Optional[str] = None
    CLERK_JWKS_URL: Optional[str] = None

    # Admin routes
    ADMIN_KEY: Optional[str] = None
    ADMIN_AUTH_MODE: str = "hybrid"  # "clerk" | "legacy" | "hybrid"
    ENVIRONMENT: str = "dev"  # "dev" | "test" | "prod"; gates the legacy admin key

    model_config = ConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()


def _config_problems(cfg) -> List[str]:
    problems = []
    missing = [key for key in ("DATABASE_URL", "ADMIN_KEY") if not getattr(cfg, key, None)]
    if missing:
        problems.append(f"Missing required configuration: {', '.join(missing)}")
    timeout = getattr(cfg, "PLAN_STORE_CALL_TIMEOUT_SECONDS", None)
    if timeout is not None and timeout <= 0:
        problems.append("PLAN_STORE_CALL_TIMEOUT_SECONDS must be positive")
    return problems


def validate_config(
    strict: Optional[bool] = None,
    settings_obj: Optional[Settings] = None,
    logger: Optional[logging.Logger] = None,
) -> bool:
    """Warn about incomplete configuration, or raise RuntimeError in strict mode.

    Only key names are reported, never values.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("plansync.config")
    if strict is None:
        strict = getattr(cfg, "CONFIG_STRICT", False)

    problems = _config_problems(cfg)
    if problems and strict:
        raise RuntimeError("; ".join(problems))
    for problem in problems:
        log.warning(problem)
    return True
