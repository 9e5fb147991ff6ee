"""
access_roster.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for the roster engine.
- Hide the application secret from repr/logging.
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MultitenancySettings(BaseModel):
    enabled: bool = False
    # Subject-side listings only return rows of the subject's current tenant (or tenant-less rows).
    auto_scope: bool = True


class CacheSettings(BaseModel):
    enabled: bool = True
    key_prefix: str = "roster"
    # "redis" shares entries (and invalidations) across worker processes.
    backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    # Upper bound for the in-process backend; least recently used entries go first.
    max_entries: int = Field(default=10_000, ge=1)
    default_ttl: int = 3600
    ttl_by_operation: dict[str, int] = Field(
        default_factory=lambda: {
            "role_check": 1800,
            "participants": 3600,
            "assigned_entities": 3600,
        }
    )

    def ttl_for(self, kind: str) -> int:
        return self.ttl_by_operation.get(kind, self.default_ttl)


class Settings(BaseSettings):
    """
    Engine configuration:
    - Strict env-driven configuration (ROSTER_ prefix, `__` for nested sections)
    - Defaults safe for local dev
    - Single settings object handed to the store, codec and planner
    """

    model_config = SettingsConfigDict(
        env_prefix="ROSTER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    service_name: str = "access-roster"
    log_level: str = "INFO"

    # Persistence
    database_url: str = "sqlite+aiosqlite:///./roster.db"
    # Name of the store (see planner.StoreRegistry) holding the roster table.
    roster_store: str = "default"

    # Assignment semantics
    assignment_strategy: Literal["replace", "add"] = "replace"
    duplicate_policy: Literal["ignore", "raise"] = "ignore"

    # Role key security
    key_storage: Literal["plain", "hashed", "encrypted"] = "hashed"
    app_secret: str = Field(default="dev-secret-change-me", repr=False)
    # Migration aid: accept legacy plain keys while running in encrypted mode.
    allow_plain_key_fallback: bool = False

    # Informational; identifiers are handled as opaque strings.
    id_format: Literal["integer", "uuid", "ulid"] = "integer"
    query_strategy: Literal["auto", "join", "id_list"] = "auto"

    multitenancy: MultitenancySettings = Field(default_factory=MultitenancySettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for every consumer.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# Nested sections are set from the environment as e.g. ROSTER_MULTITENANCY__ENABLED=true
# or ROSTER_CACHE__TTL_BY_OPERATION='{"role_check": 60}'.
