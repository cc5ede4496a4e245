from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_MAPPINGS_DIR = Path(__file__).resolve().parent.parent / "mapper" / "profiles"

# Environments where destructive dev utilities (audit purge) are allowed; APP_ENV must opt in
PURGE_ENVIRONMENTS = frozenset({"local", "test"})


@dataclass(frozen=True)
class AppConfig:
    environment: str = "production"
    mappings_dir: Path = DEFAULT_MAPPINGS_DIR
    dead_letter_dir: Optional[Path] = None
    audit_dir: Optional[Path] = None
    job_workers: int = 2
    queue_size: int = 100
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def purge_allowed(self) -> bool:
        return self.environment in PURGE_ENVIRONMENTS


def get_app_config() -> AppConfig:
    dlq = os.getenv("EDI_DLQ_DIR")
    audit = os.getenv("EDI_AUDIT_DIR")
    return AppConfig(
        environment=os.getenv("APP_ENV", "production").strip().lower(),
        mappings_dir=Path(os.getenv("EDI_MAPPINGS_DIR") or DEFAULT_MAPPINGS_DIR),
        dead_letter_dir=Path(dlq) if dlq else None,
        audit_dir=Path(audit) if audit else None,
        job_workers=int(os.getenv("JOB_WORKERS", "2")),
        queue_size=int(os.getenv("JOB_QUEUE_SIZE", "100")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("LOG_FORMAT", "json").lower(),
    )


@dataclass(frozen=True)
class ApiConfig:
    api_key: str | None = None
    rate_limit_n: int = 5
    rate_limit_window_sec: float = 1.0


def get_api_config() -> ApiConfig:
    return ApiConfig(
        api_key=os.getenv("API_KEY") or None,
        rate_limit_n=int(os.getenv("RATE_LIMIT_N", "5")),
        rate_limit_window_sec=float(os.getenv("RATE_LIMIT_WINDOW_SEC", "1.0")),
    )


@dataclass(frozen=True)
class ShopifyConfig:
    store_domain: str | None = None
    access_token: str | None = None
    api_version: str = "2024-01"
    timeout_sec: float = 10.0
    max_attempts: int = 3
    backoff_base_sec: float = 1.0
    # Admin API leaky bucket: burst size and calls restored per second
    bucket_capacity: int = 40
    refill_rate_per_sec: float = 2.0

    @property
    def configured(self) -> bool:
        return bool(self.store_domain and self.access_token)


def get_shopify_config() -> ShopifyConfig:
    return ShopifyConfig(
        store_domain=os.getenv("SHOPIFY_STORE_DOMAIN") or None,
        access_token=os.getenv("SHOPIFY_ACCESS_TOKEN") or None,
        api_version=os.getenv("SHOPIFY_API_VERSION", "2024-01"),
        timeout_sec=float(os.getenv("SHOPIFY_TIMEOUT_SEC", "10")),
        max_attempts=int(os.getenv("SHOPIFY_MAX_ATTEMPTS", "3")),
        backoff_base_sec=float(os.getenv("SHOPIFY_BACKOFF_BASE_SEC", "1.0")),
        bucket_capacity=int(os.getenv("SHOPIFY_BUCKET_CAPACITY", "40")),
        refill_rate_per_sec=float(os.getenv("SHOPIFY_REFILL_RATE_PER_SEC", "2")),
    )
