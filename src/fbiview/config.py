"""Configuration management for fbiview.

Handles loading .fbiview.yaml files with directory traversal,
environment variable overrides, and default values.
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .launcher import DEFAULT_ELEVATE, DEFAULT_KILL_TIMEOUT, FbiError
from .viewer import (
    DEFAULT_BINARY,
    DEFAULT_DEVICE,
    DEFAULT_DISPLAY_FOR,
    DEFAULT_FRAME_BUFFER,
)

CONFIG_FILENAME = ".fbiview.yaml"
ENV_BINARY = "FBIVIEW_BINARY"
ENV_DEVICE = "FBIVIEW_DEVICE"
ENV_ELEVATE = "FBIVIEW_ELEVATE"


@dataclass
class FbiviewConfig:
    """Complete fbiview configuration."""

    binary: str = DEFAULT_BINARY
    elevate: list[str] = field(default_factory=lambda: list(DEFAULT_ELEVATE))
    device: str = DEFAULT_DEVICE
    frame_buffer: str = DEFAULT_FRAME_BUFFER
    display_for: int = DEFAULT_DISPLAY_FOR  # 0 = show until killed
    quiet: bool = True  # Discard viewer output
    kill_by_name: bool = False  # killall instead of the launched pid
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    config_path: Path | None = None  # Path where config was loaded from

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            FbiError: If configuration is invalid.
        """
        if not self.binary:
            raise FbiError("binary cannot be empty")

        if self.display_for < 0:
            raise FbiError("display_for must be non-negative")

        if self.kill_timeout < 0:
            raise FbiError("kill_timeout must be non-negative")


def parse_elevate(value: Any) -> list[str]:
    """Normalize an elevation setting to an argument list.

    Accepts a shell-style string (``"sudo -n"``), a list, or an empty
    value meaning no elevation.
    """
    if value is None or value is False:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list):
        return [str(part) for part in value]
    raise FbiError(f"Invalid elevate value: {value!r}")


def find_config_file(start_path: Path | None = None) -> Path | None:
    """Find .fbiview.yaml by traversing up from start_path.

    Args:
        start_path: Directory to start searching from. Defaults to cwd.

    Returns:
        Path to config file if found, None otherwise.
    """
    if start_path is None:
        start_path = Path.cwd()
    else:
        start_path = Path(start_path).resolve()

    if start_path.is_file():
        start_path = start_path.parent

    current = start_path
    while True:
        config_path = current / CONFIG_FILENAME
        if config_path.is_file():
            return config_path

        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    config_path: Path | None = None,
    start_path: Path | None = None,
    **overrides: Any,
) -> FbiviewConfig:
    """Load configuration from file, environment, and overrides.

    Priority (highest to lowest):
    1. Keyword overrides (None values are ignored)
    2. Environment variables (FBIVIEW_BINARY, FBIVIEW_DEVICE, FBIVIEW_ELEVATE)
    3. Config file (.fbiview.yaml)
    4. Defaults

    Args:
        config_path: Explicit path to config file. If None, searches.
        start_path: Directory to start config file search from.
        **overrides: FbiviewConfig field values, e.g. from CLI options.

    Returns:
        Loaded and validated configuration.
    """
    config = FbiviewConfig()

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.is_file():
            raise FbiError(f"Config file not found: {config_path}")
    else:
        config_path = find_config_file(start_path)

    if config_path is not None:
        config = _load_config_file(config_path)

    env_binary = os.environ.get(ENV_BINARY)
    if env_binary:
        config.binary = env_binary

    env_device = os.environ.get(ENV_DEVICE)
    if env_device:
        config.device = env_device

    # An empty FBIVIEW_ELEVATE disables elevation
    env_elevate = os.environ.get(ENV_ELEVATE)
    if env_elevate is not None:
        config.elevate = parse_elevate(env_elevate)

    for name, value in overrides.items():
        if not hasattr(config, name):
            raise FbiError(f"Unknown config option: {name}")
        if value is not None:
            setattr(config, name, value)

    config.validate()
    return config


def _load_config_file(config_path: Path) -> FbiviewConfig:
    """Load configuration from a YAML file.

    Raises:
        FbiError: If file cannot be read or parsed.
    """
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise FbiError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise FbiError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise FbiError(f"Config file {config_path} must contain a mapping")

    config = FbiviewConfig(config_path=config_path)

    if "binary" in data:
        config.binary = str(data["binary"] or "")
    if "elevate" in data:
        config.elevate = parse_elevate(data["elevate"])
    if "device" in data:
        config.device = str(data["device"])
    if "frame_buffer" in data:
        config.frame_buffer = str(data["frame_buffer"])

    try:
        if "display_for" in data:
            config.display_for = int(data["display_for"])
        if "kill_timeout" in data:
            config.kill_timeout = float(data["kill_timeout"])
    except (TypeError, ValueError) as e:
        raise FbiError(f"Invalid number in {config_path}: {e}") from e

    if "quiet" in data:
        config.quiet = bool(data["quiet"])
    if "kill_by_name" in data:
        config.kill_by_name = bool(data["kill_by_name"])

    return config


def create_default_config(path: Path | None = None) -> Path:
    """Create a default .fbiview.yaml config file.

    Args:
        path: Directory to create config in. Defaults to cwd.

    Returns:
        Path to created config file.

    Raises:
        FbiError: If file already exists or cannot be written.
    """
    if path is None:
        path = Path.cwd()
    else:
        path = Path(path)

    config_path = path / CONFIG_FILENAME

    if config_path.exists():
        raise FbiError(f"Config file already exists: {config_path}")

    config_content = f"""# fbiview configuration

# Viewer executable (or use {ENV_BINARY} env var)
binary: "{DEFAULT_BINARY}"

# Command prefix needed to open the framebuffer device.
# Set to "" to run the viewer directly (or use {ENV_ELEVATE} env var).
elevate: "{' '.join(DEFAULT_ELEVATE)}"

# Output device and console (or use {ENV_DEVICE} env var)
device: "{DEFAULT_DEVICE}"
frame_buffer: "{DEFAULT_FRAME_BUFFER}"

# Seconds to show an image before stopping the viewer; 0 = until killed
display_for: {DEFAULT_DISPLAY_FOR}

# Discard viewer output (false captures stderr for error reports)
quiet: true

# Stop every running viewer with killall instead of only the launched one
kill_by_name: false

# Seconds to wait after SIGTERM before SIGKILL
kill_timeout: {DEFAULT_KILL_TIMEOUT:g}
"""

    try:
        config_path.write_text(config_content)
    except OSError as e:
        raise FbiError(f"Cannot write config file: {e}") from e

    return config_path


def config_to_dict(config: FbiviewConfig) -> dict[str, Any]:
    """Convert config to dictionary for display."""
    return {
        "binary": config.binary,
        "elevate": list(config.elevate),
        "device": config.device,
        "frame_buffer": config.frame_buffer,
        "display_for": config.display_for,
        "quiet": config.quiet,
        "kill_by_name": config.kill_by_name,
        "kill_timeout": config.kill_timeout,
        "config_path": str(config.config_path) if config.config_path else None,
    }
