"""Configuration loading.

Settings come from a JSON file, then environment variables (credentials), then
CLI flags, later sources winning. Example ``photoshelf.json``::

    {
        "backend": "supabase",
        "max_file_size": 10485760,
        "allowed_types": ["image/jpeg", "image/png", "image/webp"],
        "group_size": 3,
        "identity_policy": "filename",
        "supabase": {"bucket": "portfolio-photos", "prefix": "photos"}
    }
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from loguru import logger

from photoshelf.lib.filetype import ALLOWED_MEDIA_TYPES, MAX_FILE_SIZE

DEFAULT_CONFIG_NAME = "photoshelf.json"

BACKENDS = ("local", "supabase", "vercel-blob", "filebrowser")

# environment variable -> (section, key)
ENV_OVERRIDES = {
    "SUPABASE_URL": ("supabase", "url"),
    "NEXT_PUBLIC_SUPABASE_URL": ("supabase", "url"),
    "SUPABASE_SERVICE_ROLE_KEY": ("supabase", "service_key"),
    "BLOB_READ_WRITE_TOKEN": ("vercel_blob", "token"),
    "FILEBROWSER_URL": ("filebrowser", "url"),
    "FILEBROWSER_USERNAME": ("filebrowser", "username"),
    "FILEBROWSER_PASSWORD": ("filebrowser", "password"),
    "FILEBROWSER_TOKEN": ("filebrowser", "token"),
}


@dataclass
class Settings:
    backend: str = "local"
    max_file_size: int = MAX_FILE_SIZE
    allowed_types: tuple[str, ...] = ALLOWED_MEDIA_TYPES
    group_size: int = 3
    group_delay: float = 0.0
    identity_policy: str = "filename"
    verify_content: bool = False
    upload_strategies: tuple[str, ...] = ("direct", "renamed")
    cache_ttl: float = 300.0
    fallback_images: tuple[str, ...] = ()
    local: dict[str, Any] = field(default_factory=dict)
    supabase: dict[str, Any] = field(default_factory=dict)
    vercel_blob: dict[str, Any] = field(default_factory=dict)
    filebrowser: dict[str, Any] = field(default_factory=dict)

    def backend_options(self, name: Optional[str] = None) -> dict[str, Any]:
        """Options block for ``name`` (default: the selected backend)."""
        name = name or self.backend
        return dict(getattr(self, name.replace("-", "_"), {}) or {})


def load_config(path: Optional[str], verbose: bool = False) -> dict[str, Any]:
    """Read a JSON config file. A missing or unreadable file yields ``{}``."""
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        if verbose:
            logger.info("config path does not exist: {}", p)
        return {}
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("failed to load config from {}: {}", p, e)
        return {}
    if not isinstance(data, dict):
        logger.error("config {} must contain a JSON object, got {}", p, type(data).__name__)
        return {}
    if verbose:
        logger.info("loaded config from {}", p)
    return data


def _as_int(value: Any, default: int, minimum: int = 1) -> int:
    try:
        out = int(value)
    except (TypeError, ValueError):
        return default
    return out if out >= minimum else default


def _as_float(value: Any, default: float) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if out >= 0 else default


def _as_list(value: Any) -> Optional[list[str]]:
    # accept list or comma string
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return None


def validate_and_normalize_config(
    cfg: Mapping[str, Any],
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Turn a raw config dict plus environment into ``Settings``.

    Bad values fall back to defaults rather than failing; an unknown backend
    name is the exception since nothing sensible can be done with it.
    """
    env = os.environ if env is None else env
    defaults = Settings()

    backend = str(env.get("PHOTOSHELF_BACKEND") or cfg.get("backend") or defaults.backend).lower()
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend {backend!r} (expected one of {', '.join(BACKENDS)})")

    allowed = _as_list(cfg.get("allowed_types"))
    strategies = _as_list(cfg.get("upload_strategies"))
    fallbacks = _as_list(cfg.get("fallback_images"))

    sections = {}
    for section in ("local", "supabase", "vercel_blob", "filebrowser"):
        raw = cfg.get(section) or cfg.get(section.replace("_", "-")) or {}
        sections[section] = dict(raw) if isinstance(raw, dict) else {}
    for var, (section, key) in ENV_OVERRIDES.items():
        if env.get(var):
            sections[section][key] = env[var]

    return Settings(
        backend=backend,
        max_file_size=_as_int(cfg.get("max_file_size"), defaults.max_file_size),
        allowed_types=tuple(t.lower() for t in allowed) if allowed else defaults.allowed_types,
        group_size=_as_int(cfg.get("group_size"), defaults.group_size),
        group_delay=_as_float(cfg.get("group_delay"), defaults.group_delay),
        identity_policy=str(cfg.get("identity_policy") or defaults.identity_policy),
        verify_content=bool(cfg.get("verify_content", defaults.verify_content)),
        upload_strategies=tuple(strategies) if strategies else defaults.upload_strategies,
        cache_ttl=_as_float(cfg.get("cache_ttl"), defaults.cache_ttl) or defaults.cache_ttl,
        fallback_images=tuple(fallbacks) if fallbacks else defaults.fallback_images,
        **sections,
    )


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings from ``path``, or ``photoshelf.json`` in the working directory."""
    if path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_NAME
        path = str(candidate) if candidate.exists() else None
    return validate_and_normalize_config(load_config(path), env)
