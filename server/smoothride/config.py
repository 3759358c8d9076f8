"""Server configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: SMOOTH_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class StorageConfig:
    backend: str = "memory"


@dataclass
class CacheConfig:
    backend: str = "memory"  # "memory", "redis" or "none"
    redis_url: str = "redis://localhost:6379"
    cluster_ttl_seconds: int = 300
    max_entries: int = 10_000


@dataclass
class SpamConfig:
    duplicate_radius_m: float = 10.0
    duplicate_window_minutes: int = 30
    rapid_threshold: int = 5
    rapid_window_seconds: int = 60
    clustering_radius_m: float = 100.0
    clustering_threshold: int = 10
    clustering_window_hours: int = 24
    flag_ttl_seconds: int = 86_400


@dataclass
class DecayConfig:
    enabled: bool = True
    run_hour_utc: int = 2
    expiration_days: int = 180
    page_size: int = 500
    max_attempts: int = 3
    backoff_seconds: float = 2.0


@dataclass
class RoutingConfig:
    osrm_url: str = "http://router.project-osrm.org"
    timeout_seconds: float = 10.0
    buffer_meters: float = 100.0
    max_detour_percent: float = 20.0


@dataclass
class LimitsConfig:
    active_window_seconds: float = 120.0
    merge_radius_m: float = 50.0


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"
    file: str = ""


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    spam: SpamConfig = field(default_factory=SpamConfig)
    decay: DecayConfig = field(default_factory=DecayConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _coerce(raw: str, current):
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    for section_field in fields(config):
        section = getattr(config, section_field.name)
        for f in fields(section):
            env_key = f"SMOOTH_{section_field.name}_{f.name}".upper()
            val = os.environ.get(env_key)
            if val is not None:
                setattr(section, f.name, _coerce(val, getattr(section, f.name)))


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("SMOOTH_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_name, values in raw.items():
            section = getattr(config, section_name, None)
            if section is None or not isinstance(values, dict):
                continue
            for k, v in values.items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
