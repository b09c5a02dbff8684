"""
Configuration management for Vulnerability Intelligence Pipeline
"""
import os
import json
import copy
import logging
from typing import Dict, Any, Optional
from pathlib import Path

from vip.utils.config_validator import ConfigValidator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "vip.json"


class Config:
    """Centralized configuration management"""

    def __init__(self, config_file: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None):
        self.config_file = config_file or os.environ.get("VIP_CONFIG", DEFAULT_CONFIG_FILE)
        self.config = self._load_config()
        if overrides:
            self.config = _deep_merge(self.config, overrides)

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file merged over the defaults"""
        defaults = self._get_default_config()
        config_path = Path(self.config_file)

        if config_path.exists():
            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    loaded = json.load(f)
                logger.info(f"Loaded configuration from {self.config_file}")
                return _deep_merge(defaults, loaded)
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load config file {self.config_file}: {e}")
                logger.info("Using default configuration")
        else:
            logger.debug(f"Config file {self.config_file} not found, using default configuration")

        return defaults

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration"""
        return {
            "api": {
                "ossindex": {
                    "enabled": True,
                    "base_url": "https://ossindex.sonatype.org",
                    "username": None,
                    "token_env": "OSSINDEX_API_TOKEN",
                    "token_encoded": False,
                    "timeout": 30,
                    "user_agent": "VulnerabilityIntelligencePipeline/1.0",
                    "request_max_purl": 128,
                    "alias_sync_enabled": True,
                    "retry": {
                        "max_attempts": 10,
                        "initial_delay": 1.0,
                        "multiplier": 2.0,
                        "max_delay": 60.0
                    }
                }
            },
            "cache": {
                "validity_period_ms": 43200000
            },
            "database": {
                "url": "sqlite:///vip.db",
                "echo": False
            },
            "processing": {
                "analysis_level": "periodic"
            },
            "files": {
                "cwe_catalog": None
            },
            "logging": {
                "level": "INFO",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "file": None,  # Set to filename to enable file logging
                "json_file": None,
                "max_error_records": 1000
            }
        }

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Args:
            key_path: Dot-separated path to config value (e.g., 'api.ossindex.timeout')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value: Any) -> None:
        """
        Set configuration value using dot notation

        Args:
            key_path: Dot-separated path to config value
            value: Value to set
        """
        keys = key_path.split('.')
        config = self.config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def save(self) -> None:
        """Save current configuration to file"""
        try:
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=4)
            logger.info(f"Configuration saved to {self.config_file}")
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")

    def validate(self) -> bool:
        """
        Validate configuration

        Returns:
            True if configuration is valid
        """
        validator = ConfigValidator()
        is_valid = validator.validate_config(self.config)

        if not is_valid:
            logger.error("Configuration validation failed:")
            for error in validator.get_errors():
                logger.error(f"  - {error}")

        for warning in validator.get_warnings():
            logger.warning(f"Configuration warning: {warning}")

        return is_valid

    def get_api_key(self, api_name: str) -> Optional[str]:
        """
        Get API token from the environment variable named in the config

        Args:
            api_name: Name of the API (e.g., 'ossindex')

        Returns:
            API token or None if not found
        """
        env_var = self.get(f'api.{api_name}.token_env')
        if env_var:
            return os.environ.get(env_var)
        return None

    def setup_logging(self) -> None:
        """Setup logging based on configuration"""
        level = getattr(logging, str(self.get('logging.level', 'INFO')).upper(), logging.INFO)
        format_str = self.get('logging.format', '%(asctime)s - %(levelname)s - %(message)s')
        log_file = self.get('logging.file')

        logging.basicConfig(
            level=level,
            format=format_str,
            filename=log_file if log_file else None,
            filemode='a' if log_file else 'w'
        )


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# Global configuration instance, created on first use
_config: Optional[Config] = None


def get_config() -> Config:
    """Get global configuration instance"""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config) -> None:
    """Replace the global configuration instance"""
    global _config
    _config = config
