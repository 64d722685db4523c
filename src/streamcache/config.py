# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/streamcache-python/LICENSE
# ==============================================================================

"""Engine configuration."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Final


ENV_RETRIES: Final[str] = "STREAMCACHE_RETRIES"
ENV_RETRY_BACKOFF: Final[str] = "STREAMCACHE_RETRY_BACKOFF"
ENV_AUTH_ENDPOINT: Final[str] = "STREAMCACHE_AUTH_ENDPOINT"
ENV_TENANT_ENDPOINT: Final[str] = "STREAMCACHE_TENANT_ENDPOINT"


@dataclass(slots=True)
class EngineConfig:
    """Tunables for :class:`~streamcache.engine.StreamEngine`.

    ``retries`` counts attempts after the first one, so the default issues at
    most four requests per fetch.  ``retry_backoff`` is the base delay in
    seconds; attempt *n* waits ``retry_backoff * 2 ** n``.  The auth and
    tenant endpoints name the streams that :meth:`StreamEngine.reset` keeps
    alive across identity changes.
    """

    retries: int = 3
    retry_backoff: float = 0.0
    auth_endpoint: str = "/web_api/v1/users/me"
    tenant_endpoint: str = "/web_api/v1/app_configuration"

    def __post_init__(self) -> None:
        if self.retries < 0:
            raise ValueError("retries must be non-negative")
        if self.retry_backoff < 0:
            raise ValueError("retry_backoff must be non-negative")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        defaults = cls()
        return cls(
            retries=int(os.getenv(ENV_RETRIES, defaults.retries)),
            retry_backoff=float(os.getenv(ENV_RETRY_BACKOFF, defaults.retry_backoff)),
            auth_endpoint=os.getenv(ENV_AUTH_ENDPOINT, defaults.auth_endpoint),
            tenant_endpoint=os.getenv(ENV_TENANT_ENDPOINT, defaults.tenant_endpoint),
        )


__all__ = ["EngineConfig"]
