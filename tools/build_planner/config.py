"""Configuration for size estimation and advice."""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

from shared.logger import get_logger

from .models import parse_size

logger = get_logger(__name__)

MB = 1024 * 1024

# Fields holding byte sizes; these accept "150MB"-style strings in config files
SIZE_FIELDS = {
    "default_base_bytes",
    "default_install_bytes",
    "default_run_bytes",
    "default_context_bytes",
    "default_copy_bytes",
    "default_artifact_bytes",
    "static_server_bytes",
}


@dataclass
class PlannerConfig:
    """Defaults and tunables for the size estimator and the advisor."""

    default_base_bytes: int = 200 * MB
    default_install_bytes: int = 150 * MB
    default_run_bytes: int = 10 * MB
    default_context_bytes: int = 50 * MB
    default_copy_bytes: int = 1 * MB
    default_artifact_bytes: int = 5 * MB
    install_scale: float = 1.0
    static_server_image: str = "nginx:stable-alpine"
    static_server_bytes: int = 43 * MB
    image_sizes: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlannerConfig":
        """
        Build a config from a mapping, e.g. a parsed JSON file.

        Args:
            data: Mapping of field names to values

        Returns:
            PlannerConfig

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config key(s): {', '.join(unknown)}")

        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SIZE_FIELDS:
                values[key] = parse_size(value)
            elif key == "install_scale":
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                    raise ValueError(f"install_scale must be a non-negative number, got {value!r}")
                values[key] = float(value)
            elif key == "static_server_image":
                if not isinstance(value, str) or not value:
                    raise ValueError("static_server_image must be a non-empty string")
                values[key] = value
            elif key == "image_sizes":
                if not isinstance(value, dict):
                    raise ValueError("image_sizes must be a mapping of image reference to size")
                values[key] = {str(ref): parse_size(size) for ref, size in value.items()}

        return cls(**values)


@dataclass
class SizeHints:
    """Optional caller-supplied size hints for the heuristic size model."""

    dependency_bytes: Optional[int] = None
    context_bytes: Optional[int] = None
    artifact_bytes: Optional[int] = None


def load_config(path: Path) -> PlannerConfig:
    """
    Load planner configuration from a JSON file.

    Args:
        path: Path to JSON config file

    Returns:
        PlannerConfig

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not valid JSON or has invalid values
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")

    config = PlannerConfig.from_dict(data)
    logger.debug(f"Loaded config from {path}")
    return config
