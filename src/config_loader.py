"""

Configuration loader for GST Lookup
Reads and validates settings.yaml
"""

import yaml
import os
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime
import logging

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_URL = "https://services.gst.gov.in/services/searchtp"
DEFAULT_TAXPAYER_DETAILS_PATH = "/api/search/taxpayerDetails"
DEFAULT_GOODS_SERVICES_PATH = "/api/search/goodservice"

CHALLENGE_TIMEOUT_POLICIES = ("proceed", "abort")
ANSWER_PROVIDERS = ("none", "prompt", "2captcha")


class ConfigValidationError(ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and float(value) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and float(value) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


def _validate_choice(value: Any, choices: tuple, field: str) -> None:
    """Validate that a string value is one of the allowed choices."""
    if value is None:
        return
    if str(value).strip().lower() not in choices:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be one of {', '.join(choices)}, got {value!r}"
        )


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: str = "config/settings.yaml"):
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load config from YAML file"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
            logger.info(f"✓ Config loaded from {self.config_path}")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing config file: {e}")
            raise

        self._validate_invariants()

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        # Browser timeouts (must be positive)
        _validate_positive(self.get('browser.page_timeout'), 'browser.page_timeout')
        _validate_positive(self.get('browser.navigation_timeout'), 'browser.navigation_timeout')
        _validate_positive(self.get('browser.launch_timeout'), 'browser.launch_timeout')
        _validate_positive(self.get('browser.keepalive_interval_seconds'), 'browser.keepalive_interval_seconds')
        _validate_positive(self.get('browser.viewport_width'), 'browser.viewport_width')
        _validate_positive(self.get('browser.viewport_height'), 'browser.viewport_height')
        _validate_non_negative(self.get('browser.slow_mo_ms'), 'browser.slow_mo_ms')

        # Search pacing
        _validate_positive(self.get('search.max_attempts'), 'search.max_attempts')
        for key in (
            'search.settle_delay_seconds',
            'search.fill_settle_seconds',
            'search.post_submit_delay_seconds',
            'search.retry_backoff_seconds',
            'search.navigation_retry_delay_seconds',
        ):
            _validate_non_negative(self.get(key), key)
        _validate_positive(self.get('search.network_idle_timeout_seconds'), 'search.network_idle_timeout_seconds')
        _validate_positive(self.get('search.input_wait_timeout_seconds'), 'search.input_wait_timeout_seconds')
        _validate_positive(self.get('search.payload_wait_seconds'), 'search.payload_wait_seconds')
        _validate_positive(self.get('search.payload_poll_interval_seconds'), 'search.payload_poll_interval_seconds')

        # Captcha settings
        _validate_positive(self.get('captcha.timeout_seconds'), 'captcha.timeout_seconds')
        _validate_positive(self.get('captcha.poll_interval_seconds'), 'captcha.poll_interval_seconds')
        _validate_non_negative(self.get('captcha.stabilize_delay_seconds'), 'captcha.stabilize_delay_seconds')
        _validate_positive(self.get('captcha.network_idle_timeout_seconds'), 'captcha.network_idle_timeout_seconds')
        _validate_positive(self.get('captcha.solver_timeout_seconds'), 'captcha.solver_timeout_seconds')
        _validate_choice(self.get('captcha.on_timeout'), CHALLENGE_TIMEOUT_POLICIES, 'captcha.on_timeout')
        _validate_choice(self.get('captcha.answer_provider'), ANSWER_PROVIDERS, 'captcha.answer_provider')

        logger.debug("✓ Config invariants validated")

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'search.max_attempts')"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    # === Portal Config ===

    def get_search_url(self) -> str:
        """Get the taxpayer search page URL"""
        return self.get('portal.search_url', DEFAULT_SEARCH_URL)

    def get_taxpayer_details_path(self) -> str:
        """Get the URL fragment of the taxpayer-detail API response"""
        return self.get('portal.taxpayer_details_path', DEFAULT_TAXPAYER_DETAILS_PATH)

    def get_goods_services_path(self) -> str:
        """Get the URL fragment of the goods/services API response"""
        return self.get('portal.goods_services_path', DEFAULT_GOODS_SERVICES_PATH)

    # === Browser Config ===

    def is_headless(self) -> bool:
        """Check if browser should run in headless mode"""
        return bool(self.get('browser.headless', False))

    def get_slow_mo(self) -> int:
        """Get Playwright slow-motion delay in milliseconds"""
        return int(self.get('browser.slow_mo_ms', 100))

    def get_viewport(self) -> Dict[str, int]:
        """Get the fixed browser viewport"""
        return {
            "width": int(self.get('browser.viewport_width', 1280)),
            "height": int(self.get('browser.viewport_height', 720)),
        }

    def get_page_timeout(self) -> int:
        """Get default action timeout in milliseconds"""
        return int(self.get('browser.page_timeout', 30) * 1000)

    def get_navigation_timeout(self) -> int:
        """Get navigation timeout in milliseconds"""
        return int(self.get('browser.navigation_timeout', 60) * 1000)

    def get_launch_timeout(self) -> int:
        """Get browser launch timeout in milliseconds"""
        return int(self.get('browser.launch_timeout', 60) * 1000)

    def get_keepalive_interval(self) -> float:
        """Get seconds between keep-alive sweeps"""
        return float(self.get('browser.keepalive_interval_seconds', 60))

    def get_browser_channel(self) -> str:
        """Get Playwright browser channel override"""
        return self.get('browser.channel', '') or ''

    def get_browser_executable_path(self) -> str:
        """Get browser executable path override"""
        return self.get('browser.executable_path', '') or ''

    def use_stealth(self) -> bool:
        """Check if Playwright stealth should be enabled"""
        return bool(self.get('browser.use_stealth', False))

    # === Search Config ===

    def get_max_attempts(self) -> int:
        """Get attempts per lookup"""
        return int(self.get('search.max_attempts', 3))

    def get_settle_delay(self) -> float:
        """Get seconds to wait after the search page loads"""
        return float(self.get('search.settle_delay_seconds', 5))

    def get_network_idle_timeout(self) -> float:
        """Get seconds to wait for network quiescence after navigation"""
        return float(self.get('search.network_idle_timeout_seconds', 5))

    def get_input_wait_timeout(self) -> float:
        """Get seconds to wait for the identifier input to appear"""
        return float(self.get('search.input_wait_timeout_seconds', 10))

    def get_fill_settle_delay(self) -> float:
        """Get seconds to wait after typing the identifier"""
        return float(self.get('search.fill_settle_seconds', 2))

    def get_post_submit_delay(self) -> float:
        """Get seconds to wait after submitting before polling"""
        return float(self.get('search.post_submit_delay_seconds', 2))

    def get_payload_wait(self) -> float:
        """Get the ceiling in seconds for the taxpayer-detail response"""
        return float(self.get('search.payload_wait_seconds', 15))

    def get_payload_poll_interval(self) -> float:
        """Get seconds between payload checks"""
        return float(self.get('search.payload_poll_interval_seconds', 1))

    def get_retry_backoff(self) -> float:
        """Get seconds to wait before retrying a failed attempt"""
        return float(self.get('search.retry_backoff_seconds', 5))

    def get_navigation_retry_delay(self) -> float:
        """Get seconds to wait before retrying a failed navigation"""
        return float(self.get('search.navigation_retry_delay_seconds', 3))

    def is_dom_fallback_enabled(self) -> bool:
        """Check if page markup extraction runs when no response was captured"""
        return bool(self.get('search.dom_fallback', True))

    # === Captcha Config ===

    def get_captcha_timeout(self) -> float:
        """Get seconds to wait for a challenge to be cleared"""
        return float(self.get('captcha.timeout_seconds', 300))

    def get_captcha_poll_interval(self) -> float:
        """Get seconds between challenge checks"""
        return float(self.get('captcha.poll_interval_seconds', 2))

    def get_captcha_stabilize_delay(self) -> float:
        """Get seconds to let the page settle after a challenge clears"""
        return float(self.get('captcha.stabilize_delay_seconds', 2))

    def get_captcha_network_idle_timeout(self) -> float:
        """Get seconds to wait for network quiescence after a challenge clears"""
        return float(self.get('captcha.network_idle_timeout_seconds', 8))

    def get_captcha_status_interval(self) -> float:
        """Get seconds between 'still waiting' log lines"""
        return float(self.get('captcha.status_interval_seconds', 10))

    def get_captcha_on_timeout(self) -> str:
        """Get challenge timeout policy: proceed | abort."""
        value = (self.get('captcha.on_timeout', '') or '').strip().lower()
        return value or 'proceed'

    def get_captcha_answer_provider(self) -> str:
        """Get challenge answer provider: none | prompt | 2captcha."""
        value = (self.get('captcha.answer_provider', '') or '').strip().lower()
        return value or 'none'

    def get_captcha_api_key_env(self) -> str:
        """Get env var name that contains the captcha API key."""
        return (self.get("captcha.api_key_env", "") or "CAPTCHA_API_KEY").strip() or "CAPTCHA_API_KEY"

    def get_captcha_api_key(self) -> str:
        """Read captcha API key from env using captcha.api_key_env (never stored in config)."""
        env_name = self.get_captcha_api_key_env()
        return (os.getenv(env_name) or "").strip()

    def get_captcha_solver_timeout(self) -> int:
        """Get external solver timeout in seconds"""
        return int(self.get('captcha.solver_timeout_seconds', 120))

    def get_captcha_solver_poll_interval(self) -> float:
        """Get external solver polling interval in seconds"""
        value = self.get("captcha.solver_poll_interval_seconds", 5)
        return max(float(value), 1.0)

    # === Session / Diagnostics Config ===

    def get_cookies_file(self) -> Path:
        """Get cookie store path"""
        return Path(self.get('session.cookies_file', 'config/browser-cookies.json'))

    def get_diagnostics_dir(self) -> Path:
        """Get directory for screenshots, markup dumps and challenge images"""
        return Path(self.get('diagnostics.output_dir', 'output/diagnostics'))

    # === Output Config ===

    def get_output_path(self, file_type: str = 'json') -> Path:
        """Get output file path with timestamp if enabled"""
        use_timestamp = self.get('output.use_timestamp', True)
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S') if use_timestamp else ''

        template = self.get(f'output.{file_type}_file', f'output/lookups.{file_type}')
        filename = template.replace('{timestamp}', timestamp)

        return Path(filename)

    def is_metrics_enabled(self) -> bool:
        """Check if run metrics are written"""
        return bool(self.get('metrics.enabled', True))

    def get_metrics_template(self) -> str:
        """Get run metrics output path template"""
        return self.get('metrics.output_file', 'output/run_metrics_{timestamp}.json')

    # === Logging Config ===

    def get_log_level(self) -> str:
        """Get logging level"""
        return self.get('logging.level', 'INFO')

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/gst_lookup.log')
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = template.replace('{timestamp}', timestamp)
        return Path(filename)

    def __repr__(self) -> str:
        return f"<Config: url={self.get_search_url()}, attempts={self.get_max_attempts()}>"


# Convenience function
def load_config(config_path: str = "config/settings.yaml") -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path)
