"""
Configuration Loader (``sourcing_config.loader``).

Responsibility
--------------
Loads a shop's sourcing YAML file and parses it into a frozen
``ShopConfig``.  Services never read files; they are handed the parsed
config.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ConfigurationError``.

Audit relevance
---------------
``compute_checksum`` identifies the exact configuration a sourcing run used;
it is logged with every load.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from sourcing_config.schema import ShopConfig
from sourcing_kernel.exceptions import ConfigurationError
from sourcing_kernel.logging_config import get_logger

logger = get_logger("config.loader")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ConfigurationError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top-level YAML value must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_shop_config(data: dict[str, Any]) -> ShopConfig:
    """Parse a shop config mapping; a ``sourcing`` wrapper key is optional."""
    if "sourcing" in data and isinstance(data["sourcing"], dict):
        data = data["sourcing"]
    return ShopConfig.from_dict(data)


def load_shop_config(path: Path | str) -> ShopConfig:
    """Load and parse a shop sourcing configuration file."""
    path = Path(path)
    data = load_yaml_file(path)
    config = parse_shop_config(data)
    logger.info(
        "shop_config_loaded",
        extra={
            "path": str(path),
            "shop_id": config.shop_id,
            "checksum": compute_checksum(data),
        },
    )
    return config
