from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml

from parts_pricing.app.models.config import PricingConfig

SUPPORTED_SCHEMA_VERSIONS = {1}


def load_pricing_config(path: str | Path) -> PricingConfig:
    data: Dict[str, Any]
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    config = PricingConfig.model_validate(data)
    if config.schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"Unsupported schema_version {config.schema_version}")
    if config.locking.strategy not in {"global", "category"}:
        raise ValueError(f"Unsupported locking strategy {config.locking.strategy}")
    return config


def load_config_from_env() -> PricingConfig:
    path = os.getenv("PRICING_CONFIG")
    if not path:
        return PricingConfig()
    return load_pricing_config(path)
