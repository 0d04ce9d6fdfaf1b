"""
Fleet Trip Integrity - Configuration Management

Settings come from the environment (a .env file via python-dotenv) when
running locally, and from AWS SSM Parameter Store under AWS_SSM_PREFIX when
ENVIRONMENT=production. Module-level constants at the bottom are what the rest
of the code imports.
"""

import logging
import os
from typing import Callable, Optional, TypeVar
from dotenv import load_dotenv

load_dotenv()

T = TypeVar('T')

TRUE_STRINGS = ('true', '1', 'yes', 'on')


class Config:
    """Typed access to settings, backed by os.environ or SSM."""

    def __init__(self):
        self.environment = os.getenv('ENVIRONMENT', 'local')
        self._ssm_client = None

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if self.environment == 'production':
            return self._get_from_ssm(key, default)
        return os.getenv(key, default)

    def _ssm(self):
        if self._ssm_client is None:
            import boto3
            self._ssm_client = boto3.client('ssm', region_name=os.getenv('AWS_REGION', 'us-east-1'))
        return self._ssm_client

    def _get_from_ssm(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """
        Read one SecureString/String parameter.

        A missing parameter, or an AWS failure (credentials, IAM, network),
        yields the default when one is given. Without a default both raise
        ConfigurationError naming the full parameter path.
        """
        parameter_name = f"{os.getenv('AWS_SSM_PREFIX', '/fleet-integrity')}/{key}"

        try:
            response = self._ssm().get_parameter(Name=parameter_name, WithDecryption=True)
            return response['Parameter']['Value']
        except Exception as e:
            # botocore builds its error classes at runtime, so match by name
            error_type = type(e).__name__
            if default is not None:
                if error_type != 'ParameterNotFound':
                    logging.warning(f"SSM lookup of '{key}' failed ({error_type}: {e}); using default")
                return default
            if error_type == 'ParameterNotFound':
                raise ConfigurationError(
                    f"Required parameter '{key}' not found in SSM at path '{parameter_name}'"
                )
            raise ConfigurationError(f"Failed to fetch parameter '{key}' from SSM: {error_type}: {e}")

    def _convert(self, key: str, default: T, convert: Callable[[str], T]) -> T:
        value = self.get(key, str(default))
        try:
            return convert(value)
        except (ValueError, TypeError):
            logging.warning(f"Config key '{key}' has unusable value {value!r}; using default={default}")
            return default

    def get_int(self, key: str, default: int) -> int:
        return self._convert(key, default, int)

    def get_float(self, key: str, default: float) -> float:
        return self._convert(key, default, float)

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get(key, str(default))
        if value is None:
            return default
        return value.lower() in TRUE_STRINGS

    @property
    def is_production(self) -> bool:
        return self.environment == 'production'

    @property
    def is_local(self) -> bool:
        return self.environment == 'local'


class ConfigurationError(Exception):
    """A required setting could not be loaded."""


config = Config()

# Database configuration
# DATABASE_URL wins when set (e.g. sqlite:///fleet.db for local runs)
DATABASE_URL = config.get('DATABASE_URL', '')
DB_HOST = config.get('DB_HOST', 'localhost')
DB_PORT = config.get_int('DB_PORT', 3306)
DB_NAME = config.get('DB_NAME', 'fleet_integrity_dev')
DB_USER = config.get('DB_USER', 'root')
DB_PASSWORD = config.get('DB_PASSWORD', '')

# Fleet backend API (HTTP trip store)
FLEET_API_BASE_URL = config.get('FLEET_API_BASE_URL', 'http://localhost:8000/api')
FLEET_API_KEY = config.get('FLEET_API_KEY', '')
FLEET_API_TIMEOUT_SECONDS = config.get_float('FLEET_API_TIMEOUT_SECONDS', 10.0)
MAX_RETRY_ATTEMPTS = config.get_int('MAX_RETRY_ATTEMPTS', 3)
RETRY_BACKOFF_MULTIPLIER = config.get_int('RETRY_BACKOFF_MULTIPLIER', 2)

# Flask configuration
FLASK_ENV = config.get('FLASK_ENV', 'development')
FLASK_DEBUG = config.get_bool('FLASK_DEBUG', True)
SECRET_KEY = config.get('SECRET_KEY', 'dev-secret-key-change-in-production')

# Logging configuration
LOG_LEVEL = config.get('LOG_LEVEL', 'INFO')

# Calendar day boundary for "today" audit statistics
REPORTING_TIMEZONE = config.get('REPORTING_TIMEZONE', 'UTC')

# Quality score penalties (points subtracted per issue)
PENALTY_CRITICAL = config.get_int('PENALTY_CRITICAL', 50)
PENALTY_HIGH = config.get_int('PENALTY_HIGH', 20)
PENALTY_MEDIUM = config.get_int('PENALTY_MEDIUM', 10)
PENALTY_LOW = config.get_int('PENALTY_LOW', 5)
PENALTY_WARNING = config.get_int('PENALTY_WARNING', 0)  # Warnings are advisory by default
ODOMETER_GAP_THRESHOLD_KM = config.get_float('ODOMETER_GAP_THRESHOLD_KM', 50.0)

# Edge-case detection
ANOMALY_ZSCORE_THRESHOLD = config.get_float('ANOMALY_ZSCORE_THRESHOLD', 3.0)
OUTLIER_STD_DEVS = config.get_float('OUTLIER_STD_DEVS', 2.5)
BASELINE_WINDOW_TRIPS = config.get_int('BASELINE_WINDOW_TRIPS', 30)
BASELINE_MIN_TRIPS = config.get_int('BASELINE_MIN_TRIPS', 5)
RECENT_DETECTIONS_LIMIT = config.get_int('RECENT_DETECTIONS_LIMIT', 50)
RECOVERY_MIN_CONFIDENCE = config.get_float('RECOVERY_MIN_CONFIDENCE', 50.0)

# Fleet scan concurrency
SCAN_MAX_WORKERS = config.get_int('SCAN_MAX_WORKERS', 4)
SCAN_RATE_LIMIT_PER_SECOND = config.get_float('SCAN_RATE_LIMIT_PER_SECOND', 5.0)
SCAN_TIMEOUT_SECONDS = config.get_float('SCAN_TIMEOUT_SECONDS', 300.0)

# Database connection pool settings
DB_POOL_SIZE = 10
DB_POOL_MAX_OVERFLOW = 20
DB_POOL_RECYCLE = 3600  # Recycle connections after 1 hour
DB_POOL_PRE_PING = True  # Health check connections before use

# Database I/O timeouts (seconds); a stalled server fails the call instead of hanging it
DB_CONNECT_TIMEOUT = config.get_int('DB_CONNECT_TIMEOUT', 10)
DB_READ_TIMEOUT = config.get_int('DB_READ_TIMEOUT', 30)
DB_WRITE_TIMEOUT = config.get_int('DB_WRITE_TIMEOUT', 30)
DB_POOL_TIMEOUT = config.get_int('DB_POOL_TIMEOUT', 30)
