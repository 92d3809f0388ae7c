"""Session configuration via environment variables."""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import Field, TypeAdapter, field_validator, model_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigRejected

# Options that may never be turned off.
MANDATORY_OPTIONS = ("cookie_secure", "cookie_httponly", "use_strict_mode")

_BOOL = TypeAdapter(bool)


class Settings(BaseSettings):
    cookie_name: str = "session"
    cookie_lifetime: int = Field(default=0, ge=0)
    cookie_path: str = "/"
    cookie_domain: str = ""
    cookie_secure: bool = True
    cookie_httponly: bool = True
    cookie_samesite: Literal["Lax", "Strict", "None"] = "Lax"
    use_strict_mode: bool = True
    use_only_cookies: bool = True
    use_trans_sid: bool = False
    referer_check: str = ""
    sid_length: int = Field(default=64, ge=22, le=256)
    sid_bits_per_character: Literal[4, 5, 6] = 5
    hash_function: str = "sha256"
    gc_maxlifetime: int = Field(default=1440, gt=0)
    gc_probability: int = Field(default=1, ge=0)
    gc_divisor: int = Field(default=100, gt=0)
    cache_limiter: Literal["nocache", "private", "private_no_expire", "public", ""] = "nocache"
    cache_expire: int = Field(default=180, ge=0)  # minutes
    secret: str = "change-me-in-production"
    backend: str = "memory"  # "memory" or "dynamodb"
    dynamodb_table: str = "sessions"
    dynamodb_endpoint: str = ""  # For local DynamoDB
    dynamodb_region: str = "us-west-2"

    model_config = {"env_prefix": "SESSION_", "case_sensitive": False}

    @field_validator("hash_function")
    @classmethod
    def _known_hash(cls, value: str) -> str:
        # shake_* digests need an explicit length
        if value not in hashlib.algorithms_available or value.startswith("shake_"):
            raise ValueError(f"unknown hash function: {value}")
        return value

    @model_validator(mode="after")
    def _security_invariants(self) -> Settings:
        for option in MANDATORY_OPTIONS:
            if not getattr(self, option):
                raise ValueError(f"{option} cannot be disabled")
        if self.use_trans_sid or not self.use_only_cookies:
            raise ValueError("session ids may only travel in cookies")
        return self

    @property
    def gc_chance(self) -> float:
        return self.gc_probability / self.gc_divisor


settings: Settings | None = None


def get_settings() -> Settings:
    global settings
    if settings is None:
        settings = Settings()
    return settings


def override_settings(s: Settings | None) -> None:
    """For testing: inject a Settings instance (``None`` resets to env)."""
    global settings
    settings = s


def resolve_settings(config: Settings | Mapping[str, Any] | None = None) -> Settings:
    """Merge caller overrides over the process defaults.

    Raises ConfigRejected before anything else happens if the overrides try
    to switch off a mandatory option.
    """
    if config is None:
        return get_settings()
    if isinstance(config, Settings):
        return config

    # Overrides read from env or ini files arrive as strings such as "false".
    flags = {
        option: _BOOL.validate_python(config[option])
        for option in (*MANDATORY_OPTIONS, "use_only_cookies", "use_trans_sid")
        if option in config
    }
    for option in MANDATORY_OPTIONS:
        if flags.get(option) is False:
            raise ConfigRejected(option)
    if flags.get("use_trans_sid") or flags.get("use_only_cookies") is False:
        raise ConfigRejected("use_only_cookies", "Session ids may only travel in cookies")

    merged = {**get_settings().model_dump(), **config}
    return Settings.model_validate(merged)
