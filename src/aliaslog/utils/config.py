"""Configuration management for alias log monitor."""

import os
import yaml
from typing import Dict, Any, List, Optional
from pathlib import Path

from .exceptions import ConfigurationError


DEFAULT_CONFIG_DIR = os.environ.get("ALIASLOG_CONFIG_DIR", "config")


class ConfigManager:
    """Manages application configuration from YAML files."""

    def __init__(self, config_dir: str = DEFAULT_CONFIG_DIR):
        self.config_dir = Path(config_dir)
        self._settings: Optional[Dict[str, Any]] = None
        self._classification: Optional[Dict[str, Any]] = None

    @property
    def settings(self) -> Dict[str, Any]:
        """Load and cache runtime settings."""
        if self._settings is None:
            self._settings = self._load_yaml("settings.yaml")
        return self._settings

    @property
    def classification(self) -> Dict[str, Any]:
        """Load and cache the error classification rule table."""
        if self._classification is None:
            self._classification = self._load_yaml("classification_rules.yaml")
        return self._classification

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        """Load YAML configuration file."""
        file_path = self.config_dir / filename

        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {filename}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Top level of {filename} must be a mapping")
        return data

    def reload(self) -> None:
        """Drop cached files so the next access re-reads them."""
        self._settings = None
        self._classification = None

    def get_section(self, name: str) -> Dict[str, Any]:
        """Get a top-level section of settings.yaml."""
        section = self.settings.get(name, {})
        if not isinstance(section, dict):
            raise ConfigurationError(f"Section '{name}' in settings.yaml must be a mapping")
        return section

    def get_discovery_config(self) -> Dict[str, Any]:
        """Get file discovery configuration."""
        return self.get_section("discovery")

    def get_aggregation_config(self) -> Dict[str, Any]:
        """Get aggregation configuration."""
        return self.get_section("aggregation")

    def get_watcher_config(self) -> Dict[str, Any]:
        """Get watcher configuration."""
        return self.get_section("watcher")

    def get_registry_config(self) -> Dict[str, Any]:
        """Get alias registry configuration."""
        return self.get_section("registry")

    def get_supported_extensions(self, include_browse: bool = False) -> List[str]:
        """Get log file extensions, optionally with the directory-browse extras."""
        discovery = self.get_discovery_config()
        extensions = list(discovery.get("extensions", [".log", ".txt", ".out", ".err"]))
        if include_browse:
            for ext in discovery.get("browse_extensions", [".json"]):
                if ext not in extensions:
                    extensions.append(ext)
        return [ext.lower() for ext in extensions]

    def get_classification_rules(self) -> List[Dict[str, Any]]:
        """Get the ordered classification rules."""
        rules = self.classification.get("rules", [])
        if not isinstance(rules, list):
            raise ConfigurationError("'rules' in classification_rules.yaml must be a list")
        return rules

    def get_solutions(self) -> Dict[str, Any]:
        """Get remediation text keyed by category."""
        return self.classification.get("solutions", {}) or {}


# Global configuration instance
config = ConfigManager()
