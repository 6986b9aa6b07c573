"""Content instance configuration values.

Instances are addressed by a short name (``staging``, ``prod``...). Every setting is read from
``CMSYNC_<NAME>_*`` environment variables, the name being upper-cased with dashes turned into
underscores.
"""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .errors import ConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig

INSTANCE_TIMEOUT_SECONDS = 30.0
SCHEMA_PATH_PREFIX = "/api/content-type-builder/"


@dataclass(frozen=True)
class InstanceConfig:
    """Connection settings for one content-store instance."""

    name: str
    base_url: str
    api_token: str
    resilience: ResilienceConfig
    username: str | None = None
    password: str | None = None
    database_url: str | None = None

    @property
    def supports_snapshots(self) -> bool:
        return self.database_url is not None


def instance_env_prefix(name: str) -> str:
    normalized = name.strip().upper().replace("-", "_")
    if not normalized or not normalized.replace("_", "").isalnum():
        raise ConfigurationError(f"Invalid instance name: {name!r}")
    return f"CMSYNC_{normalized}_"


def _default_resilience(name: str, base_url: str) -> ResilienceConfig:
    return ResilienceConfig(
        name=f"content-store:{name}",
        base_url=base_url,
        timeout_seconds=INSTANCE_TIMEOUT_SECONDS,
        ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
        # Each client lives for a single operation, so a forced schema check still refetches.
        cache=CacheConfig(backend="memory", cache_paths=(SCHEMA_PATH_PREFIX,)),
    )


def get_instance_config(
    name: str,
    *,
    resilience: ResilienceConfig | None = None,
) -> InstanceConfig:
    prefix = instance_env_prefix(name)
    values = require_env_vars((f"{prefix}URL", f"{prefix}API_TOKEN"))
    base_url = values[f"{prefix}URL"].rstrip("/")
    return InstanceConfig(
        name=name,
        base_url=base_url,
        api_token=values[f"{prefix}API_TOKEN"],
        username=optional_env_var(f"{prefix}USERNAME"),
        password=optional_env_var(f"{prefix}PASSWORD"),
        database_url=optional_env_var(f"{prefix}DATABASE_URL"),
        resilience=resilience or _default_resilience(name, base_url),
    )
