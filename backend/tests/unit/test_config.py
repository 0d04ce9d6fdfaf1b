"""
Fleet Trip Integrity - Configuration Unit Tests

Tests the Config class with:
- Environment variable loading
- AWS SSM Parameter Store integration (mocked)
- Type conversions (int, float, bool)
- Default value handling
- Error handling for missing configuration

Priority: P0 - Foundation (configuration used by all modules)
"""

import pytest
import os
from unittest.mock import patch, MagicMock


class ParameterNotFound(Exception):
    """Stand-in for the boto3 SSM ParameterNotFound error (matched by class name)."""
    pass


def mock_ssm_client(value=None, error=None):
    mock_ssm = MagicMock()
    if error is not None:
        mock_ssm.get_parameter.side_effect = error
    else:
        mock_ssm.get_parameter.return_value = {'Parameter': {'Value': value}}
    return mock_ssm


# ============================================================================
# Test Class: Config - Local Mode (Environment Variables)
# ============================================================================

class TestConfigLocalMode:
    """
    Test Config class in local development mode.

    Mode: ENVIRONMENT='local'
    Source: os.getenv() from .env file or system environment
    """

    def test_config_defaults_to_local_environment(self):
        """
        Config should default to 'local' environment if ENVIRONMENT not set.

        Given: ENVIRONMENT not set in environment
        When: Config() is instantiated
        Then: environment should be 'local'
        """
        with patch.dict(os.environ, {}, clear=True):
            from utils.config import Config
            config = Config()
            assert config.environment == 'local'
            assert config.is_local is True
            assert config.is_production is False

    def test_get_returns_environment_variable_in_local_mode(self):
        """
        Config.get() should read from os.getenv() in local mode.

        Given: ENVIRONMENT='local', FLEET_API_KEY='secret'
        When: config.get('FLEET_API_KEY') is called
        Then: Return 'secret'
        """
        with patch.dict(os.environ, {'ENVIRONMENT': 'local', 'FLEET_API_KEY': 'secret'}):
            from utils.config import Config
            assert Config().get('FLEET_API_KEY') == 'secret'

    def test_get_returns_default_when_key_not_found(self):
        with patch.dict(os.environ, {'ENVIRONMENT': 'local'}, clear=True):
            from utils.config import Config
            config = Config()
            assert config.get('MISSING_KEY', 'default_value') == 'default_value'
            assert config.get('MISSING_KEY') is None


# ============================================================================
# Test Class: Config - Production Mode (AWS SSM)
# ============================================================================

class TestConfigProductionMode:
    """
    Test Config class in production mode with AWS SSM Parameter Store.

    Mode: ENVIRONMENT='production'
    Source: AWS SSM Parameter Store (mocked)
    """

    @patch('boto3.client')
    def test_get_fetches_from_ssm_in_production_mode(self, mock_boto_client):
        """
        Config.get() should fetch from AWS SSM in production mode.

        Given: ENVIRONMENT='production'
        When: config.get('DB_HOST') is called
        Then: Fetch from SSM at path /fleet-integrity/DB_HOST
        """
        mock_ssm = mock_ssm_client('prod-database.aws.com')
        mock_boto_client.return_value = mock_ssm

        with patch.dict(os.environ, {'ENVIRONMENT': 'production'}):
            os.environ.pop('AWS_SSM_PREFIX', None)
            from utils.config import Config
            result = Config().get('DB_HOST')

        mock_boto_client.assert_called_once()
        mock_ssm.get_parameter.assert_called_once_with(
            Name='/fleet-integrity/DB_HOST',
            WithDecryption=True
        )
        assert result == 'prod-database.aws.com'

    @patch('boto3.client')
    def test_get_uses_custom_ssm_prefix(self, mock_boto_client):
        """
        Config should use custom AWS_SSM_PREFIX if provided.

        Given: ENVIRONMENT='production', AWS_SSM_PREFIX='/custom/prefix'
        When: config.get('DB_HOST') is called
        Then: Fetch from SSM at path /custom/prefix/DB_HOST
        """
        mock_ssm = mock_ssm_client('custom-database.aws.com')
        mock_boto_client.return_value = mock_ssm

        with patch.dict(os.environ, {'ENVIRONMENT': 'production', 'AWS_SSM_PREFIX': '/custom/prefix'}):
            from utils.config import Config
            result = Config().get('DB_HOST')

        mock_ssm.get_parameter.assert_called_once_with(
            Name='/custom/prefix/DB_HOST',
            WithDecryption=True
        )
        assert result == 'custom-database.aws.com'

    @patch('boto3.client')
    def test_ssm_client_is_created_once(self, mock_boto_client):
        mock_boto_client.return_value = mock_ssm_client('value')

        with patch.dict(os.environ, {'ENVIRONMENT': 'production'}):
            from utils.config import Config
            config = Config()
            config.get('A')
            config.get('B')

        assert mock_boto_client.call_count == 1

    @patch('boto3.client')
    def test_missing_parameter_uses_default(self, mock_boto_client):
        """
        Given: ENVIRONMENT='production', SSM parameter not found
        When: config.get('MISSING_PARAM', 'default_value') is called
        Then: Return 'default_value'
        """
        mock_boto_client.return_value = mock_ssm_client(error=ParameterNotFound("Not found"))

        with patch.dict(os.environ, {'ENVIRONMENT': 'production'}):
            from utils.config import Config
            assert Config().get('MISSING_PARAM', 'default_value') == 'default_value'

    @patch('boto3.client')
    def test_missing_parameter_without_default_raises(self, mock_boto_client):
        """
        Given: ENVIRONMENT='production', SSM parameter not found, no default
        When: config.get('REQUIRED_PARAM') is called
        Then: Raise ConfigurationError naming the parameter path
        """
        from utils.config import Config, ConfigurationError
        mock_boto_client.return_value = mock_ssm_client(error=ParameterNotFound("Not found"))

        with patch.dict(os.environ, {'ENVIRONMENT': 'production', 'AWS_SSM_PREFIX': '/fleet-integrity'}):
            config = Config()
            with pytest.raises(ConfigurationError) as exc_info:
                config.get('REQUIRED_PARAM')

        assert '/fleet-integrity/REQUIRED_PARAM' in str(exc_info.value)

    @patch('boto3.client')
    def test_credentials_error_uses_default(self, mock_boto_client):
        mock_boto_client.return_value = mock_ssm_client(error=Exception("NoCredentialsError"))

        with patch.dict(os.environ, {'ENVIRONMENT': 'production'}):
            from utils.config import Config
            assert Config().get('DB_HOST', 'localhost') == 'localhost'

    @patch('boto3.client')
    def test_credentials_error_without_default_raises(self, mock_boto_client):
        from utils.config import Config, ConfigurationError
        mock_boto_client.return_value = mock_ssm_client(error=Exception("NoCredentialsError"))

        with patch.dict(os.environ, {'ENVIRONMENT': 'production'}):
            with pytest.raises(ConfigurationError):
                Config().get('DB_HOST')


# ============================================================================
# Test Class: Type Conversion Methods
# ============================================================================

class TestConfigTypeConversions:
    """
    Test Config type conversion methods: get_int(), get_float(), get_bool()

    Used for penalties, thresholds, worker counts and feature flags.
    """

    def test_get_int_converts_string_to_integer(self):
        with patch.dict(os.environ, {'ENVIRONMENT': 'local', 'PENALTY_HIGH': '25'}):
            from utils.config import Config
            result = Config().get_int('PENALTY_HIGH', 20)
            assert result == 25
            assert isinstance(result, int)

    def test_get_int_returns_default_on_invalid_conversion(self):
        with patch.dict(os.environ, {'ENVIRONMENT': 'local', 'SCAN_MAX_WORKERS': 'many'}):
            from utils.config import Config
            assert Config().get_int('SCAN_MAX_WORKERS', 4) == 4

    def test_get_float(self):
        with patch.dict(os.environ, {'ENVIRONMENT': 'local', 'OUTLIER_STD_DEVS': '3.5', 'BAD_FLOAT': 'x'}):
            from utils.config import Config
            config = Config()
            assert config.get_float('OUTLIER_STD_DEVS', 2.5) == 3.5
            assert config.get_float('BAD_FLOAT', 2.5) == 2.5
            assert config.get_float('MISSING_FLOAT', 1.5) == 1.5

    def test_get_bool_converts_strings(self):
        with patch.dict(os.environ, {'ENVIRONMENT': 'local'}):
            from utils.config import Config
            config = Config()

            for value in ['true', 'True', '1', 'yes', 'on']:
                with patch.dict(os.environ, {'TEST_BOOL': value}):
                    assert config.get_bool('TEST_BOOL', False) is True, f"'{value}' should be True"
            for value in ['false', '0', 'no', 'off', 'random']:
                with patch.dict(os.environ, {'TEST_BOOL': value}):
                    assert config.get_bool('TEST_BOOL', True) is False, f"'{value}' should be False"

    def test_get_bool_returns_default_when_key_not_found(self):
        with patch.dict(os.environ, {'ENVIRONMENT': 'local'}, clear=True):
            from utils.config import Config
            assert Config().get_bool('MISSING_BOOL', True) is True


# ============================================================================
# Test Class: Global Configuration Constants
# ============================================================================

class TestGlobalConfigConstants:
    """Test global configuration constants exported by config module."""

    def test_scoring_and_detection_constants(self):
        from utils import config

        assert config.PENALTY_CRITICAL >= config.PENALTY_HIGH >= config.PENALTY_MEDIUM >= config.PENALTY_LOW
        assert config.ODOMETER_GAP_THRESHOLD_KM > 0
        assert config.ANOMALY_ZSCORE_THRESHOLD > 0
        assert config.BASELINE_MIN_TRIPS >= 2

    def test_scan_and_api_constants(self):
        from utils import config

        assert config.SCAN_MAX_WORKERS >= 1
        assert config.SCAN_TIMEOUT_SECONDS > 0
        assert hasattr(config, 'FLEET_API_BASE_URL')
        assert hasattr(config, 'REPORTING_TIMEZONE')

    def test_configuration_error_is_exception(self):
        from utils.config import ConfigurationError
        assert issubclass(ConfigurationError, Exception)
