import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from checkpoint.errors import ConfigParseError

logger = logging.getLogger(__name__)

CHECKPOINT_DIR = ".checkpoints"
CONFIG_FILE = "config.json"

DEFAULT_CONFIG = {
    "maxCheckpoints": 10,
    "autoName": True,
    "additionalIgnores": [],
    "nameTemplate": "checkpoint_{timestamp}",
}


@dataclass
class Config:
    max_checkpoints: int = DEFAULT_CONFIG["maxCheckpoints"]
    auto_name: bool = DEFAULT_CONFIG["autoName"]
    additional_ignores: list = field(default_factory=list)
    name_template: str = DEFAULT_CONFIG["nameTemplate"]

    def to_dict(self):
        return {
            "maxCheckpoints": self.max_checkpoints,
            "autoName": self.auto_name,
            "additionalIgnores": list(self.additional_ignores),
            "nameTemplate": self.name_template,
        }


def merge_config(raw):
    """Shallow-merge a parsed config.json over the defaults.

    Unknown keys are dropped. A field of the wrong type keeps its default
    rather than failing the whole file.
    """
    merged = dict(DEFAULT_CONFIG)
    if isinstance(raw, dict):
        for key, default in DEFAULT_CONFIG.items():
            if key not in raw:
                continue
            value = raw[key]
            if isinstance(default, bool):
                ok = isinstance(value, bool)
            elif isinstance(default, int):
                ok = isinstance(value, int) and not isinstance(value, bool)
            elif isinstance(default, list):
                ok = isinstance(value, list) and all(isinstance(v, str) for v in value)
            else:
                ok = isinstance(value, str) and bool(value)
            if ok:
                merged[key] = value
            else:
                logger.warning("Ignoring invalid %s in config: %r", key, value)

    return Config(
        max_checkpoints=max(1, merged["maxCheckpoints"]),
        auto_name=merged["autoName"],
        additional_ignores=list(merged["additionalIgnores"]),
        name_template=merged["nameTemplate"],
    )


def _read_config(config_file):
    try:
        raw = json.loads(Path(config_file).read_text())
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigParseError(f"Invalid JSON in {config_file}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigParseError(f"{config_file} must contain a JSON object")
    return raw


def save_config(config_file, config):
    """Write config.json, pretty-printed."""
    config_file = Path(config_file)
    config_file.write_text(json.dumps(config.to_dict(), indent=2) + "\n")


def load_config(config_file):
    """Load config.json, falling back to (and persisting) defaults.

    Never raises for a missing or malformed file: the result is always usable.
    """
    config_file = Path(config_file)
    try:
        return merge_config(_read_config(config_file))
    except FileNotFoundError:
        pass
    except (ConfigParseError, OSError) as e:
        logger.warning("%s; using defaults", e)

    config = merge_config({})
    try:
        save_config(config_file, config)
    except OSError as e:
        logger.warning("Could not write default config to %s: %s", config_file, e)
    return config


def find_project_root(start=None):
    """Walk up from start (default cwd) to the nearest dir holding .checkpoints, like git finds .git."""
    current = Path(start).resolve() if start else Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CHECKPOINT_DIR).is_dir():
            return parent
    return current
