"""
Configuration validation utilities for Vulnerability Intelligence Pipeline
"""
import logging
from typing import Dict, Any, List

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
ANALYSIS_LEVELS = ["bom_upload", "periodic", "manual"]


class ConfigValidator:
    """Checks a merged configuration dictionary"""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_config(self, config: Dict[str, Any]) -> bool:
        """
        Validate configuration

        Args:
            config: Configuration dictionary to validate

        Returns:
            bool: True if valid, False otherwise
        """
        self.errors.clear()
        self.warnings.clear()

        if not self._validate_required_fields(config):
            return False

        self._validate_types(config)
        self._validate_ranges(config)
        self._validate_formats(config)
        self._validate_custom_rules(config)

        return len(self.errors) == 0

    def _validate_required_fields(self, config: Dict[str, Any]) -> bool:
        """Validate required fields are present"""
        for field in ["api", "cache", "database", "logging"]:
            if field not in config:
                self.errors.append(f"Missing required field: {field}")
                return False

        if "ossindex" not in config.get("api", {}):
            self.errors.append("Missing required API field: ossindex")
            return False

        for field in ["base_url", "request_max_purl", "retry"]:
            if field not in config["api"]["ossindex"]:
                self.errors.append(f"Missing required OSS Index field: {field}")
                return False

        return True

    def _validate_types(self, config: Dict[str, Any]):
        """Validate data types"""
        ossindex = config["api"]["ossindex"]
        if not isinstance(ossindex.get("timeout"), (int, float)):
            self.errors.append("API ossindex timeout must be a number")
        if not _is_int(ossindex.get("request_max_purl")):
            self.errors.append("API ossindex request_max_purl must be an integer")
        if not isinstance(ossindex.get("alias_sync_enabled", True), bool):
            self.errors.append("API ossindex alias_sync_enabled must be a boolean")

        retry = ossindex.get("retry", {})
        if not _is_int(retry.get("max_attempts")):
            self.errors.append("Retry max_attempts must be an integer")
        for key in ("initial_delay", "multiplier", "max_delay"):
            if not isinstance(retry.get(key), (int, float)):
                self.errors.append(f"Retry {key} must be a number")

        if not _is_int(config["cache"].get("validity_period_ms")):
            self.errors.append("Cache validity_period_ms must be an integer")

    def _validate_ranges(self, config: Dict[str, Any]):
        """Validate value ranges"""
        ossindex = config["api"]["ossindex"]
        timeout = ossindex.get("timeout")
        if isinstance(timeout, (int, float)) and (timeout < 1 or timeout > 300):
            self.errors.append("API ossindex timeout must be between 1 and 300 seconds")

        page_size = ossindex.get("request_max_purl")
        if _is_int(page_size) and (page_size < 1 or page_size > 128):
            self.errors.append("API ossindex request_max_purl must be between 1 and 128")

        retry = ossindex.get("retry", {})
        attempts = retry.get("max_attempts")
        if _is_int(attempts) and attempts < 1:
            self.errors.append("Retry max_attempts must be at least 1")
        multiplier = retry.get("multiplier")
        if isinstance(multiplier, (int, float)) and multiplier < 1:
            self.errors.append("Retry multiplier must be at least 1")

        validity = config["cache"].get("validity_period_ms")
        if _is_int(validity) and validity < 0:
            self.errors.append("Cache validity_period_ms must not be negative")

    def _validate_formats(self, config: Dict[str, Any]):
        """Validate string formats"""
        base_url = config["api"]["ossindex"].get("base_url", "")
        if not base_url or not str(base_url).startswith(("http://", "https://")):
            self.errors.append("API ossindex base_url must be a valid HTTP/HTTPS URL")

        level = str(config["logging"].get("level", "INFO")).upper()
        if level not in LOG_LEVELS:
            self.errors.append(f"Logging level must be one of {', '.join(LOG_LEVELS)}")

        db_url = config["database"].get("url", "")
        if not db_url or "://" not in str(db_url):
            self.errors.append("Database url must be an SQLAlchemy URL")

        catalog = config.get("files", {}).get("cwe_catalog")
        if catalog and not str(catalog).endswith(".json"):
            self.errors.append("Files cwe_catalog must have .json extension")

    def _validate_custom_rules(self, config: Dict[str, Any]):
        """Validate combinations of settings"""
        ossindex = config["api"]["ossindex"]
        retry = ossindex.get("retry", {})
        try:
            if retry["max_delay"] < retry["initial_delay"]:
                self.warnings.append("Retry max_delay is smaller than initial_delay")
        except (KeyError, TypeError):
            pass

        if ossindex.get("username") and not ossindex.get("token_env"):
            self.warnings.append("OSS Index username is set without token_env; requests will be anonymous")

        level = config.get("processing", {}).get("analysis_level", "periodic")
        if level not in ANALYSIS_LEVELS:
            self.warnings.append(f"Unknown processing analysis_level '{level}'")

    def get_errors(self) -> List[str]:
        """Get validation errors"""
        return self.errors.copy()

    def get_warnings(self) -> List[str]:
        """Get validation warnings"""
        return self.warnings.copy()

    def get_validation_report(self) -> Dict[str, Any]:
        """Get validation report"""
        return {
            "valid": len(self.errors) == 0,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "errors": self.errors.copy(),
            "warnings": self.warnings.copy()
        }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
