"""Strict YAML / JSON loading with Pydantic validation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from orderrouter.models.config import RouterConfig
from orderrouter.util.errors import ConfigLoadError


def load_config_yaml(path: str | Path) -> RouterConfig:
    """Load and validate a RouterConfig from a YAML file."""
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ConfigLoadError(f"Cannot read config {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigLoadError("Config YAML must parse to a mapping at top level.")
    try:
        return RouterConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigLoadError(f"Config validation failed: {e}") from e


def load_json(path: str | Path) -> Dict[str, Any]:
    """Load a JSON file and return it as a dict."""
    path = Path(path)
    obj = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("JSON fixture must be an object.")
    return obj
