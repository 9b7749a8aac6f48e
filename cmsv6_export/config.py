"""
Configuration loader for the CMS export client
Features: JSON config, .env loading, environment overrides, validation
"""
import os
import json
import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

# Config file path (overridable per call or via CMS_CONFIG_FILE)
CONFIG_FILE = os.path.join(os.getcwd(), 'config.json')

# Cache for loaded config
_config_cache: Optional[Dict[str, Any]] = None


@dataclass
class CMSServer:
    """CMS gateway connection settings"""
    host: str
    username: str
    password: str
    port: int = 8080
    download_port: int = 6609
    timezone: str = '+00:00'  # CMS server timezone offset (e.g., '+05:00' for PKT)
    request_timeout: float = 30.0
    name: str = 'cms'

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def download_base_url(self) -> str:
        return f"http://{self.host}:{self.download_port}"


class Config:
    """Configuration loader with environment variable overrides and validation"""

    @staticmethod
    def load(config_file: Optional[str] = None) -> Dict[str, Any]:
        """Load configuration from JSON with .env and environment variable overrides"""
        global _config_cache

        if _config_cache is not None and config_file is None:
            return _config_cache

        load_dotenv(find_dotenv(usecwd=True))

        config = Config._load_from_file(config_file or os.getenv('CMS_CONFIG_FILE') or CONFIG_FILE)
        config = Config._merge_with_defaults(config)
        config = Config._apply_env_overrides(config)
        Config._validate(config)

        _config_cache = config
        return config

    @staticmethod
    def reload(config_file: Optional[str] = None) -> Dict[str, Any]:
        """Force reload configuration from file and environment."""
        global _config_cache
        _config_cache = None
        logger.info("Configuration cache cleared, reloading...")
        return Config.load(config_file)

    @staticmethod
    def _load_from_file(path: str) -> Dict[str, Any]:
        """Load config from JSON file"""
        if not os.path.exists(path):
            logger.debug(f"Config file not found: {path}, using defaults")
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                config = json.load(f)
            logger.debug(f"Loaded config from {path}")
            return config
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {path}: {e}") from e

    @staticmethod
    def _get_defaults() -> Dict[str, Any]:
        """Default configuration values"""
        return {
            "cms": {
                "host": None,
                "web_port": 8080,
                "download_port": 6609,
                "username": None,
                "password": None,
                "timezone": "+00:00",
                "request_timeout_seconds": 30
            },
            "export": {
                "window_seconds": 5,
                "output_dir": ".",
                "transcoder_binary": "ffmpeg"
            },
            "polling": {
                "initial_delay_seconds": 180,
                "max_delay_seconds": None,
                "max_attempts": None,
                "timeout_seconds": None,
                "unknown_result_is_failure": True
            },
            "tracks": {
                "page_size": 500,
                "max_pages": 50
            },
            "logging": {
                "level": "INFO",
                "log_file": None,
                "json_format": False,
                "max_bytes": 10485760,
                "backup_count": 5
            },
            "metrics": {
                "enabled": False,
                "port": 9108
            }
        }

    @staticmethod
    def _merge_with_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
        """Merge loaded config with defaults"""
        defaults = Config._get_defaults()
        result = defaults.copy()

        for key, value in config.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = {**result[key], **value}
            else:
                result[key] = value

        return result

    @staticmethod
    def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides"""

        # CMS gateway
        if os.getenv('CMS_HOST'):
            config['cms']['host'] = os.getenv('CMS_HOST')
        if os.getenv('CMS_WEB_PORT'):
            config['cms']['web_port'] = int(os.getenv('CMS_WEB_PORT'))
        if os.getenv('CMS_DOWNLOAD_PORT'):
            config['cms']['download_port'] = int(os.getenv('CMS_DOWNLOAD_PORT'))
        if os.getenv('CMS_USERNAME'):
            config['cms']['username'] = os.getenv('CMS_USERNAME')
        if os.getenv('CMS_PASSWORD'):
            config['cms']['password'] = os.getenv('CMS_PASSWORD')
        if os.getenv('CMS_TIMEZONE'):
            config['cms']['timezone'] = os.getenv('CMS_TIMEZONE')
        if os.getenv('CMS_REQUEST_TIMEOUT'):
            config['cms']['request_timeout_seconds'] = float(os.getenv('CMS_REQUEST_TIMEOUT'))

        # Export
        if os.getenv('EXPORT_WINDOW_SECONDS'):
            config['export']['window_seconds'] = int(os.getenv('EXPORT_WINDOW_SECONDS'))
        if os.getenv('EXPORT_OUTPUT_DIR'):
            config['export']['output_dir'] = os.getenv('EXPORT_OUTPUT_DIR')
        if os.getenv('TRANSCODER_BINARY'):
            config['export']['transcoder_binary'] = os.getenv('TRANSCODER_BINARY')

        # Export job polling
        if os.getenv('POLL_INITIAL_DELAY'):
            config['polling']['initial_delay_seconds'] = float(os.getenv('POLL_INITIAL_DELAY'))
        if os.getenv('POLL_MAX_DELAY'):
            config['polling']['max_delay_seconds'] = float(os.getenv('POLL_MAX_DELAY'))
        if os.getenv('POLL_MAX_ATTEMPTS'):
            config['polling']['max_attempts'] = int(os.getenv('POLL_MAX_ATTEMPTS'))
        if os.getenv('POLL_TIMEOUT'):
            config['polling']['timeout_seconds'] = float(os.getenv('POLL_TIMEOUT'))
        if os.getenv('POLL_UNKNOWN_IS_FAILURE'):
            config['polling']['unknown_result_is_failure'] = os.getenv('POLL_UNKNOWN_IS_FAILURE').lower() == 'true'

        # Logging
        if os.getenv('LOG_LEVEL'):
            config['logging']['level'] = os.getenv('LOG_LEVEL').upper()
        if os.getenv('LOG_FILE'):
            config['logging']['log_file'] = os.getenv('LOG_FILE')
        if os.getenv('LOG_JSON'):
            config['logging']['json_format'] = os.getenv('LOG_JSON').lower() == 'true'

        # Metrics
        if os.getenv('METRICS_PORT'):
            config['metrics']['enabled'] = True
            config['metrics']['port'] = int(os.getenv('METRICS_PORT'))

        return config

    @staticmethod
    def _validate(config: Dict[str, Any]):
        """Validate configuration"""
        errors = []
        warnings = []

        cms = config.get('cms', {})
        if not cms.get('host'):
            errors.append("CMS host not configured (set CMS_HOST)")
        if not cms.get('username') or not cms.get('password'):
            errors.append("CMS credentials not configured (set CMS_USERNAME and CMS_PASSWORD)")
        for port_key in ('web_port', 'download_port'):
            port = cms.get(port_key)
            if not isinstance(port, int) or not 0 < port < 65536:
                errors.append(f"Invalid cms.{port_key}: {port!r}")

        export = config.get('export', {})
        window = export.get('window_seconds')
        if not isinstance(window, int) or window <= 0:
            errors.append(f"Invalid export.window_seconds: {window!r}")

        polling = config.get('polling', {})
        if (polling.get('initial_delay_seconds') or 0) <= 0:
            errors.append("polling.initial_delay_seconds must be positive")
        elif polling['initial_delay_seconds'] < 5:
            warnings.append("Export poll delay is very low (<5s), may cause API rate limiting")

        for warning in warnings:
            logger.warning(f"Config warning: {warning}")

        if errors:
            for error in errors:
                logger.error(f"Config error: {error}")
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get(key: str, default=None):
        """Get config value using dot notation (e.g., 'cms.host')"""
        config = Config.load()
        keys = key.split('.')
        value = config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    @staticmethod
    def get_cms_server(config: Optional[Dict[str, Any]] = None) -> CMSServer:
        """Build the CMS gateway settings from the loaded config"""
        cms = (config or Config.load())['cms']
        return CMSServer(
            host=cms['host'],
            username=cms['username'],
            password=cms['password'],
            port=cms['web_port'],
            download_port=cms['download_port'],
            timezone=cms.get('timezone') or '+00:00',
            request_timeout=float(cms.get('request_timeout_seconds') or 30),
        )
