"""Tests for YAML config loading and environment overrides."""

from __future__ import annotations

from smoothride.config import AppConfig, load_config


def test_defaults_without_file(tmp_path):
    config = load_config(tmp_path / "missing.yaml")
    assert config == AppConfig()
    assert config.cache.cluster_ttl_seconds == 300
    assert config.spam.rapid_threshold == 5
    assert config.decay.expiration_days == 180


def test_yaml_sections_override_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "cache:\n"
        "  backend: redis\n"
        "  redis_url: redis://cache:6379/1\n"
        "spam:\n"
        "  clustering_threshold: 20\n"
        "unknown_section:\n"
        "  whatever: 1\n"
        "decay:\n"
        "  not_a_field: 3\n"
    )
    config = load_config(path)
    assert config.cache.backend == "redis"
    assert config.cache.redis_url == "redis://cache:6379/1"
    assert config.spam.clustering_threshold == 20
    assert not hasattr(config.decay, "not_a_field")


def test_env_overrides_win(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 9000\n")
    monkeypatch.setenv("SMOOTH_SERVER_PORT", "9100")
    monkeypatch.setenv("SMOOTH_DECAY_ENABLED", "false")
    monkeypatch.setenv("SMOOTH_ROUTING_MAX_DETOUR_PERCENT", "12.5")
    monkeypatch.setenv("SMOOTH_LOGGING_FORMAT", "json")

    config = load_config(path)
    assert config.server.port == 9100
    assert config.decay.enabled is False
    assert config.routing.max_detour_percent == 12.5
    assert config.logging.format == "json"


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "alt.yaml"
    path.write_text("limits:\n  merge_radius_m: 30.0\n")
    monkeypatch.setenv("SMOOTH_CONFIG", str(path))
    assert load_config().limits.merge_radius_m == 30.0


def test_empty_yaml_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert load_config(path) == AppConfig()
