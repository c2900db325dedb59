import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _optional_int(value) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    return int(value)


def _parse_delays(raw) -> Tuple[int, ...]:
    """Accept "1,2,4" strings or any iterable of ints."""
    if isinstance(raw, str):
        return tuple(int(part) for part in raw.split(",") if part.strip())
    return tuple(int(part) for part in raw)


class Config:
    """Base configuration class with common settings."""
    # Queue processing
    WEBHOOK_BATCH_SIZE = _env_int("WEBHOOK_BATCH_SIZE", 10)
    WEBHOOK_MAX_RETRIES = _env_int("WEBHOOK_MAX_RETRIES", 6)
    WEBHOOK_RETRY_DELAYS = os.environ.get("WEBHOOK_RETRY_DELAYS", "1,2,4,8,16,32")
    WEBHOOK_DISPATCH_TIMEOUT_SECONDS = _env_float("WEBHOOK_DISPATCH_TIMEOUT_SECONDS", 10.0)
    WEBHOOK_DISPATCH_WORKERS = _env_int("WEBHOOK_DISPATCH_WORKERS", 4)
    # Unset disables the stuck-entry sweep
    WEBHOOK_CLAIM_TIMEOUT_SECONDS = _env_int("WEBHOOK_CLAIM_TIMEOUT_SECONDS", None)

    # Scheduler
    WEBHOOK_SCHEDULER_ENABLED = os.environ.get("WEBHOOK_SCHEDULER_ENABLED")
    WEBHOOK_POLL_INTERVAL_SECONDS = _env_int("WEBHOOK_POLL_INTERVAL_SECONDS", 30)

    # Provider secrets used by the receiver
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    STRIPE_SIGNATURE_TOLERANCE_SECONDS = _env_int("STRIPE_SIGNATURE_TOLERANCE_SECONDS", 300)
    QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN = os.environ.get("QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN")

    # Owner alerts for terminal failures
    ALERT_WEBHOOK_URL = os.environ.get("ALERT_WEBHOOK_URL")
    ALERT_TIMEOUT_SECONDS = _env_float("ALERT_TIMEOUT_SECONDS", 5.0)

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE")


class LocalConfig(Config):
    """Configuration for local development."""
    ENV = "local"
    DEBUG = True


class SandboxConfig(Config):
    """Configuration for sandbox/staging environment."""
    ENV = "sandbox"
    DEBUG = False


class ProductionConfig(Config):
    """Configuration for production environment."""
    ENV = "production"
    DEBUG = False


def get_config():
    """Get the appropriate configuration class based on environment variable.

    Environment is determined by FLASK_ENV or ENVIRONMENT variable:
    - 'local' or 'development' -> LocalConfig
    - 'sandbox' or 'staging' -> SandboxConfig
    - 'production' or 'prod' -> ProductionConfig

    Defaults to LocalConfig if not set.
    """
    env = (os.environ.get("FLASK_ENV") or os.environ.get("ENVIRONMENT", "local")).lower()

    if env in ["local", "development", "dev"]:
        return LocalConfig
    elif env in ["sandbox", "staging", "stage"]:
        return SandboxConfig
    elif env in ["production", "prod"]:
        return ProductionConfig
    else:
        # Default to local for safety
        return LocalConfig


@dataclass(frozen=True)
class ProcessorSettings:
    """
    Immutable processor settings, built once at start-up and injected
    into the runner, dispatcher and receiver.
    """
    batch_size: int = 10
    retry_delays: Tuple[int, ...] = (1, 2, 4, 8, 16, 32)
    max_retries: int = 6
    dispatch_timeout_seconds: float = 10.0
    dispatch_workers: int = 4
    claim_timeout_seconds: Optional[int] = None
    poll_interval_seconds: int = 30
    stripe_webhook_secret: Optional[str] = field(default=None, repr=False)
    stripe_signature_tolerance_seconds: int = 300
    quickbooks_verifier_token: Optional[str] = field(default=None, repr=False)
    alert_webhook_url: Optional[str] = None
    alert_timeout_seconds: float = 5.0

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if not self.retry_delays:
            raise ValueError("retry_delays must not be empty")
        if self.dispatch_timeout_seconds <= 0:
            raise ValueError("dispatch_timeout_seconds must be positive")

    @classmethod
    def from_config(cls, config) -> "ProcessorSettings":
        """Build settings from a Flask config mapping."""
        return cls(
            batch_size=int(config.get("WEBHOOK_BATCH_SIZE", 10)),
            retry_delays=_parse_delays(config.get("WEBHOOK_RETRY_DELAYS", "1,2,4,8,16,32")),
            max_retries=int(config.get("WEBHOOK_MAX_RETRIES", 6)),
            dispatch_timeout_seconds=float(config.get("WEBHOOK_DISPATCH_TIMEOUT_SECONDS", 10.0)),
            dispatch_workers=int(config.get("WEBHOOK_DISPATCH_WORKERS", 4)),
            claim_timeout_seconds=_optional_int(config.get("WEBHOOK_CLAIM_TIMEOUT_SECONDS")),
            poll_interval_seconds=int(config.get("WEBHOOK_POLL_INTERVAL_SECONDS", 30)),
            stripe_webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            stripe_signature_tolerance_seconds=int(config.get("STRIPE_SIGNATURE_TOLERANCE_SECONDS", 300)),
            quickbooks_verifier_token=config.get("QUICKBOOKS_WEBHOOK_VERIFIER_TOKEN"),
            alert_webhook_url=config.get("ALERT_WEBHOOK_URL"),
            alert_timeout_seconds=float(config.get("ALERT_TIMEOUT_SECONDS", 5.0)),
        )
