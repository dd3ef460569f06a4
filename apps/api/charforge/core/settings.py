"""
Environment configuration.

Defaults:
- DATABASE_URL: sqlite:///./data/app.db
- STORAGE_ROOT: ./data/storage
- EXPORTS_ROOT: ./data/exports
- GENERATION_PROVIDER: gemini (requires GEMINI_API_KEY or API_KEY)

load_settings() is called once by create_app(); any missing or invalid value
raises ConfigError there so the process never starts half-configured.
"""
from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigError

PROVIDERS = ("gemini", "mock")


@dataclass(frozen=True)
class Settings:
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    database_url: str = "sqlite:///./data/app.db"
    storage_root: str = "./data/storage"
    exports_root: str = "./data/exports"

    generation_provider: str = "gemini"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    generation_timeout_s: float = 60.0
    generation_cache_enabled: bool = True

    portraits_enabled: bool = False
    pollinations_image_url: str = "https://image.pollinations.ai/prompt"
    portrait_model: str = "flux"
    portrait_timeout_s: float = 60.0


def _parse_bool(v: Optional[str], default: bool) -> bool:
    if v is None:
        return default
    vv = v.strip().lower()
    return vv not in ("0", "false", "no", "off", "")


def _parse_timeout(name: str, v: Optional[str], default: float) -> float:
    if v is None or not v.strip():
        return default
    try:
        f = float(v)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {v!r}", details={"name": name})
    if not math.isfinite(f) or f <= 0:
        raise ConfigError(f"{name} must be a positive finite number, got {v!r}", details={"name": name})
    return f


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    e = os.environ if env is None else env

    provider = (e.get("GENERATION_PROVIDER") or "gemini").strip().lower()
    if provider not in PROVIDERS:
        raise ConfigError(
            f"unknown GENERATION_PROVIDER {provider!r}",
            details={"allowed": list(PROVIDERS)},
        )

    api_key = e.get("GEMINI_API_KEY") or e.get("API_KEY") or None
    if provider == "gemini" and not api_key:
        raise ConfigError("GEMINI_API_KEY (or API_KEY) environment variable not set")

    return Settings(
        app_version=e.get("APP_VERSION", "0.1.0"),
        log_level=e.get("LOG_LEVEL", "INFO"),
        database_url=e.get("DATABASE_URL", "sqlite:///./data/app.db"),
        storage_root=e.get("STORAGE_ROOT", "./data/storage"),
        exports_root=e.get("EXPORTS_ROOT", "./data/exports"),
        generation_provider=provider,
        gemini_api_key=api_key,
        gemini_model=e.get("GEMINI_MODEL", "gemini-2.5-flash"),
        generation_timeout_s=_parse_timeout("GENERATION_TIMEOUT_S", e.get("GENERATION_TIMEOUT_S"), 60.0),
        generation_cache_enabled=_parse_bool(e.get("GENERATION_CACHE_ENABLED"), True),
        portraits_enabled=_parse_bool(e.get("PORTRAITS_ENABLED"), False),
        pollinations_image_url=e.get("POLLINATIONS_IMAGE_URL", "https://image.pollinations.ai/prompt"),
        portrait_model=e.get("PORTRAIT_MODEL", "flux"),
        portrait_timeout_s=_parse_timeout("PORTRAIT_TIMEOUT_S", e.get("PORTRAIT_TIMEOUT_S"), 60.0),
    )
