"""Configuration management for synchronous training runs"""

import json
import os
from typing import Any, Dict, Optional

import yaml


class ConfigManager:
    """Loads nested run configuration from YAML or JSON files"""

    def __init__(self, config_path: Optional[str] = None, defaults: Optional[Dict[str, Any]] = None):
        """Initialize configuration manager"""
        self.config: Dict[str, Any] = dict(defaults or {})
        if config_path:
            self.merge_config(self.read_file(config_path))

    @staticmethod
    def read_file(config_path: str) -> Dict[str, Any]:
        """Read a YAML (default) or JSON file into a dict"""
        with open(config_path, 'r') as f:
            if os.path.splitext(config_path)[1].lower() == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        return data or {}

    def save_config(self, config_path: str):
        """Save current configuration to YAML file"""
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.config, f, default_flow_style=False)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports nested keys with dots).

        A literal dotted key stored at the top level wins over nesting.
        """
        if key in self.config:
            return self.config[key]

        value = self.config
        for k in key.split('.'):
            if not isinstance(value, dict) or k not in value:
                return default
            value = value[k]

        return default if value is None else value

    def set(self, key: str, value: Any):
        """Set configuration value by key (supports nested keys with dots)"""
        keys = key.split('.')
        config = self.config

        for k in keys[:-1]:
            if not isinstance(config.get(k), dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def section(self, name: str) -> Dict[str, Any]:
        """Copy of a top-level section (empty when absent)"""
        value = self.config.get(name)
        return dict(value) if isinstance(value, dict) else {}

    def get_all(self) -> Dict[str, Any]:
        """Get entire configuration"""
        return self.config.copy()

    def merge_config(self, new_config: Dict[str, Any]):
        """Merge new configuration with existing"""
        self._deep_merge(self.config, new_config)

    def _deep_merge(self, target: dict, source: dict):
        """Deep merge source dict into target dict"""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_merge(target[key], value)
            else:
                target[key] = value
