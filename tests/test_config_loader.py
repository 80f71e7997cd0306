"""Tests for config_loader module."""

from pathlib import Path

from cjscout.config_loader import ConfigBundle, load_all_configs, load_yaml

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


def test_load_yaml_returns_dict():
    """Test that load_yaml returns a dictionary."""
    result = load_yaml(CONFIG_DIR / "pipeline.yaml")
    assert isinstance(result, dict)


def test_load_yaml_empty_file(tmp_path):
    """Test that an empty YAML file loads as an empty dict."""
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_yaml(path) == {}


def test_pipeline_defaults():
    """Test the pipeline batch, budget and breaker settings."""
    pipeline = load_yaml(CONFIG_DIR / "pipeline.yaml")
    assert pipeline["batch_size"] == 10
    assert pipeline["time_budget_seconds"] == 600
    assert pipeline["max_pages"] == 100
    assert pipeline["circuit_breaker"]["threshold"] == 3
    assert pipeline["rate_limiter"]["interval_seconds"] == 1.0


def test_pricing_rules_points_sorted():
    """Test that smart-round points are ascending."""
    rules = load_yaml(CONFIG_DIR / "pricing_rules.yaml")
    points = rules["smart_round_points"]
    assert points == sorted(points)
    assert rules["default"]["margin_percent"] == 8


def test_load_all_configs():
    """Test loading all configurations into a ConfigBundle."""
    bundle = load_all_configs(str(CONFIG_DIR))
    assert isinstance(bundle, ConfigBundle)
    assert bundle.shipping["preferred_carriers"] == ["CJPacket Ordinary"]
    assert "vape" in bundle.categories["blocked_keywords"]
