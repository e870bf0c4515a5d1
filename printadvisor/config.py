# printadvisor/config.py
import argparse
import json
from pathlib import Path
from typing import Any, Optional

import yaml

_YAML_SUFFIXES = {".yml", ".yaml"}


def load_config(path: Optional[str] = None) -> dict:
    """Read a YAML or JSON config file into a plain dict ({} when no path is given)."""
    if not path:
        return {}
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    suffix = config_path.suffix.lower()
    text = config_path.read_text(encoding="utf-8")
    if suffix in _YAML_SUFFIXES:
        return yaml.safe_load(text) or {}
    if suffix == ".json":
        return json.loads(text)
    raise ValueError(f"Unsupported config type '{suffix}', use .yml/.yaml or .json")


def pick(*vals: Any) -> Any:
    # first value that was actually set
    return next((v for v in vals if v is not None), None)


def merge_config(args: argparse.Namespace, config: dict) -> dict:
    """
    Overlay parsed CLI arguments on a loaded config.

    Arguments left at None keep the config value; ``--config`` itself is
    never copied.
    """
    merged = dict(config)
    merged.update(
        (key, value)
        for key, value in vars(args).items()
        if value is not None and key != "config"
    )
    return merged


def easydict_to_dict(d):
    """Recursively turn EasyDict values (as built by the CLI) back into dicts."""
    from easydict import EasyDict

    if isinstance(d, EasyDict):
        return {k: easydict_to_dict(v) for k, v in d.items()}
    if isinstance(d, list):
        return [easydict_to_dict(v) for v in d]
    return d
