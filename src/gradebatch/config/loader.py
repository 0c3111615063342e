"""Configuration loader for pipeline settings."""

from pathlib import Path
from typing import Any

import yaml

from .models import PipelineSettings


class ConfigLoader:
    """Loads and validates configuration files."""

    def __init__(self, config_dir: Path | None = None):
        """Initialize the config loader.

        Args:
            config_dir: Directory containing config files. Defaults to the cwd
        """
        self.config_dir = config_dir or Path.cwd()

    def load(self, settings_file: str | Path, apply_env: bool = True) -> PipelineSettings:
        """Load pipeline settings from YAML.

        Args:
            settings_file: Path to the settings YAML file
            apply_env: Whether environment variables override file values

        Returns:
            Parsed PipelineSettings object
        """
        path = self._resolve_path(settings_file)
        data = self._load_yaml(path)
        settings = PipelineSettings.from_dict(data)
        if apply_env:
            settings = PipelineSettings.from_env(base=settings)
        return settings

    def _resolve_path(self, file_path: str | Path) -> Path:
        """Resolve a config file path."""
        path = Path(file_path)
        if not path.is_absolute():
            path = self.config_dir / path
        return path

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load and parse a YAML file."""
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
