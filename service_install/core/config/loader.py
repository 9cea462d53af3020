"""
Configuration loader: reads service.yml into a ``RawInstallSpec``.

The file may be flat or wrap everything under a ``service:`` key:

    service:
      name: backup
      source: ./dist/backup
      schedule: daily 03:30
      args: ["--quiet"]
      environment:
        BACKUP_TARGET: /srv/backup
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from service_install.core.errors import ServiceInstallError
from service_install.core.models.spec import RawInstallSpec

logger = logging.getLogger(__name__)

SPEC_CONFIG_FILE = "service.yml"


class ConfigError(ServiceInstallError):
    """Raised when the install spec file is invalid or missing."""


def find_spec_file(start_dir: Path | None = None) -> Path | None:
    """Search for service.yml starting from the given directory, walking up.

    Returns:
        Path to service.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / SPEC_CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def _resolve_relative(data: dict[str, Any], base: Path) -> dict[str, Any]:
    """Paths in the file are relative to the file, not to the cwd."""
    for key in ("source", "target", "working_dir"):
        value = data.get(key)
        if isinstance(value, str) and value and value != "@self":
            path = Path(value).expanduser()
            if not path.is_absolute():
                data[key] = str((base / path).resolve())
    return data


def load_install_spec(path: Path | None = None) -> RawInstallSpec:
    """Load and validate an install spec file.

    Args:
        path: Explicit path to service.yml. If None, searches upward.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    if path is None:
        path = find_spec_file()

    if path is None:
        raise ConfigError(f"No {SPEC_CONFIG_FILE} found. Specify --config or pass options.")

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading install spec from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    spec_data = data["service"] if "service" in data else data
    if not isinstance(spec_data, dict):
        raise ConfigError(f"Expected 'service' to be a mapping in {path}")

    # YAML reads "on" / "yes" as booleans and numbers as ints
    environment = spec_data.get("environment")
    if isinstance(environment, dict):
        spec_data["environment"] = {str(k): str(v) for k, v in environment.items()}
    if isinstance(spec_data.get("args"), list):
        spec_data["args"] = [str(a) for a in spec_data["args"]]

    spec_data = _resolve_relative(dict(spec_data), path.parent.resolve())

    try:
        spec = RawInstallSpec.model_validate(spec_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid install spec in {path}: {e}") from e

    logger.info("Loaded install spec '%s' from %s", spec.name, path)
    return spec
