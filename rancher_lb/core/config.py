"""Configuration for the Rancher load balancer provider.

Provides strongly-typed settings using Pydantic and a loader from environment
variables with defaults suitable for local development.
"""

from __future__ import annotations

import os
from typing import cast

from pydantic import AnyUrl, BaseModel, Field, ValidationError


class Settings(BaseModel):
    """Pydantic settings for the provider service."""
    # Base URL of the Cattle API, e.g. "http://rancher:8080/v2-beta"
    cattle_url: AnyUrl
    cattle_access_key: str = ""
    cattle_secret_key: str = ""
    request_timeout_s: float = 10.0
    poll_interval_s: float = Field(default=2.0, ge=0)
    poll_max_attempts: int = Field(default=30, ge=1)
    host_cache_ttl_s: float = Field(default=24 * 60 * 60, gt=0)
    port: int = 8000


def load_settings() -> Settings:
    """Load settings from environment variables and return a Settings object."""
    try:
        return Settings(
            cattle_url=cast(AnyUrl, os.getenv("CATTLE_URL", "http://localhost:8080/v2-beta")),
            cattle_access_key=os.getenv("CATTLE_ACCESS_KEY", ""),
            cattle_secret_key=os.getenv("CATTLE_SECRET_KEY", ""),
            request_timeout_s=float(os.getenv("REQUEST_TIMEOUT_S", "10.0")),
            poll_interval_s=float(os.getenv("POLL_INTERVAL_S", "2.0")),
            poll_max_attempts=int(os.getenv("POLL_MAX_ATTEMPTS", "30")),
            host_cache_ttl_s=float(os.getenv("HOST_CACHE_TTL_S", str(24 * 60 * 60))),
            port=int(os.getenv("LB_PORT", "8000")),
        )
    except (ValidationError, ValueError) as e:
        raise RuntimeError(f"Invalid configuration: {e}") from e


settings = load_settings()
