"""Config loading helpers."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml


@dataclass
class ConfigBundle:
    pipeline: Dict[str, Any]
    pricing_rules: Dict[str, Any]
    shipping: Dict[str, Any]
    categories: Dict[str, Any]


def load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_all_configs(base_dir: str = "config") -> ConfigBundle:
    base = Path(base_dir)
    return ConfigBundle(
        pipeline=load_yaml(base / "pipeline.yaml"),
        pricing_rules=load_yaml(base / "pricing_rules.yaml"),
        shipping=load_yaml(base / "shipping.yaml"),
        categories=load_yaml(base / "categories.yaml"),
    )
