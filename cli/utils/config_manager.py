"""Configuration Management for CLI Settings"""

import os
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console

console = Console()

# Environment variables win over the file so one shell can target another relay
ENV_OVERRIDES = {
    "RELAY_API_URL": ("api", "base_url"),
    "RELAY_ADMIN_TOKEN": ("api", "admin_token"),
}


class ConfigManager:
    """YAML-backed CLI settings under ``~/.outbox-relay``."""

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or Path.home() / ".outbox-relay"
        self.config_file = self.config_dir / "config.yaml"

    def get_default_config(self) -> dict[str, Any]:
        return {
            "api": {
                "base_url": "http://localhost:8000",
                "timeout": 30,
                "admin_token": None,
            },
            "display": {
                "jobs_per_page": 20,
                "recent_errors": 10,
            },
        }

    def _load_file(self) -> dict[str, Any]:
        """Defaults merged section by section with the saved file."""
        merged = self.get_default_config()
        if not self.config_file.exists():
            return merged

        try:
            saved = yaml.safe_load(self.config_file.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            return merged

        for section, values in saved.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section].update(values)
            else:
                merged[section] = values
        return merged

    def load_config(self) -> dict[str, Any]:
        """Effective configuration: defaults, then the file, then env overrides."""
        config = self._load_file()
        for env_var, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_var)
            if value:
                config.setdefault(section, {})[key] = value
        return config

    def save_config(self, config: dict[str, Any]):
        """Write the config file; it may hold the admin token, so keep it private."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(yaml.safe_dump(config, default_flow_style=False))
        self.config_file.chmod(0o600)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'api.base_url')"""
        node: Any = self.load_config()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any):
        """Set configuration value using dot notation"""
        # File values only, so env overrides are never persisted
        config = self._load_file()
        *parents, leaf = key.split(".")

        current = config
        for part in parents:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[leaf] = value
        self.save_config(config)

    def reset(self):
        """Reset configuration to defaults"""
        self.save_config(self.get_default_config())


# Global config manager instance
config = ConfigManager()
