"""
Configuration Module for the Invoice Reconciler.

Centralized access to the YAML settings that drive rasterization,
recognition, normalization, pricing and vendor learning. Values are read
with dot notation through ``get_config``; components never hard-code the
numbers that live in ``settings.yaml``.
"""

import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional

# Environment variable that points at an alternative settings file
CONFIG_ENV_VAR = "INVOICE_RECONCILER_CONFIG"


class ConfigurationManager:
    """
    Singleton holder for the reconciler's configuration.

    The first instantiation decides which file is loaded: an explicit
    ``config_path``, then the ``INVOICE_RECONCILER_CONFIG`` environment
    variable, then ``config/settings.yaml``.

    Example:
        >>> config = ConfigurationManager()
        >>> config.get("pricing.tax_rate")
        0.1
        >>> config.get("learning.history_cap", 100)
        100
    """

    _instance: Optional['ConfigurationManager'] = None
    _config: Dict[str, Any] = {}

    def __new__(cls, config_path: Optional[str] = None) -> 'ConfigurationManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None) -> None:
        """
        Initialize the configuration manager.

        Args:
            config_path: Optional path to a YAML settings file.
        """
        if self._initialized:
            return

        if config_path is None:
            config_path = os.environ.get(CONFIG_ENV_VAR)

        if config_path is None:
            self.config_path = Path(__file__).parent / "settings.yaml"
        else:
            self.config_path = Path(config_path)

        self._load_config()
        self._initialized = True

    def _load_config(self) -> None:
        """
        Load configuration from the YAML file.

        Raises:
            FileNotFoundError: If the configuration file doesn't exist.
            yaml.YAMLError: If the configuration file is invalid.
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        with open(self.config_path, 'r', encoding='utf-8') as f:
            self._config = yaml.safe_load(f) or {}

        self._resolve_paths()

    def _resolve_paths(self) -> None:
        """Resolve relative ``paths.*`` entries against the project root."""
        project_root = Path(__file__).parent.parent

        if 'paths' in self._config:
            for key, value in self._config['paths'].items():
                if value and not Path(value).is_absolute():
                    self._config['paths'][key] = str(project_root / value)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key (e.g. "ocr.tesseract.psm").
            default: Value returned when the key is missing.

        Returns:
            Configuration value or default.
        """
        keys = key.split('.')
        value = self._config

        try:
            for k in keys:
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def get_all(self) -> Dict[str, Any]:
        """Return a shallow copy of the complete configuration."""
        return self._config.copy()

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next access reloads from disk."""
        cls._instance = None


def get_config(key: str, default: Any = None) -> Any:
    """
    Convenience accessor for configuration values.

    Args:
        key: Configuration key in dot notation.
        default: Default value if key doesn't exist.

    Returns:
        Configuration value or default.
    """
    return ConfigurationManager().get(key, default)


__all__ = ['ConfigurationManager', 'get_config', 'CONFIG_ENV_VAR']
