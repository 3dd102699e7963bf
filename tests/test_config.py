"""Tests for cloudwire configuration models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from cloudwire.http.client import AsyncHttpClient
from cloudwire.http.executor import HttpCommandExecutor
from cloudwire.models.config import (
    AwsConfig,
    CloudwireConfig,
    CredentialsConfig,
    Duration,
    RetryConfig,
)
from cloudwire.signing.aws import FormSignerV4
from cloudwire.signing.azure import HeaderSigning, QueryStringSigning, SharedKeyLiteAuthentication
from cloudwire.signing.credentials import SessionCredentials
from cloudwire.signing.oauth import AuthorizationApi, JwsAlgorithm

YAML_CONFIG = """
credentials:
  identity: AKIDEXAMPLE
  credential: ${CLOUDWIRE_TEST_SECRET}
aws:
  api_version: "2010-05-08"
  endpoint: https://iam.amazonaws.com
retry:
  max_retries: 3
  delay_start: 100ms
  max_rate_limit_wait: 30s
network:
  timeout: 5
logging:
  level: DEBUG
  trace_signatures: true
"""


class TestDuration:
    """Tests for Duration parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (250, 250),
            ("500ms", 500),
            ("2s", 2000),
            ("1.5s", 1500),
            ("2m", 120_000),
            ("1h", 3_600_000),
            (" 75 ", 75),
        ],
    )
    def test_parse(self, value, expected):
        """Test supported duration formats."""
        assert Duration._parse(value) == expected

    @pytest.mark.parametrize("value", ["soon", "xms", True, 1.5])
    def test_invalid(self, value):
        """Test unsupported values are rejected."""
        with pytest.raises(ValueError):
            Duration._parse(value)


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self):
        """Test defaults match the handler defaults."""
        config = RetryConfig()
        assert config.max_retries == 5
        assert config.delay_start == 50
        assert config.backoff_pow == 2
        assert config.max_backoff_period is None
        assert config.max_rate_limit_wait == 120_000

    def test_build_handler(self):
        """Test the handler is wired from the config."""
        handler = RetryConfig(max_retries=2, delay_start="1s", max_rate_limit_wait="10s").build_handler()
        assert handler.backoff_handler.retry_count_limit == 2
        assert handler.backoff_handler.delay_start_ms == 1000
        assert handler.rate_limit_handler.retry_count_limit == 2
        assert handler.rate_limit_handler.max_rate_limit_wait_ms == 10_000

    def test_extra_fields_forbidden(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ValidationError):
            RetryConfig(retries=3)

    def test_negative_retries_rejected(self):
        """Test max_retries cannot be negative."""
        with pytest.raises(ValidationError):
            RetryConfig(max_retries=-1)


class TestCredentialsConfig:
    """Tests for CredentialsConfig."""

    def test_env_expansion(self, monkeypatch):
        """Test $VAR and ${VAR} references are expanded."""
        monkeypatch.setenv("CLOUDWIRE_TEST_ID", "AKID")
        monkeypatch.setenv("CLOUDWIRE_TEST_SECRET", "s3cret")
        config = CredentialsConfig(identity="$CLOUDWIRE_TEST_ID", credential="${CLOUDWIRE_TEST_SECRET}")
        assert config.identity == "AKID"
        assert config.credential == "s3cret"

    def test_unset_variable_kept(self, monkeypatch):
        """Test references to unset variables are left as written."""
        monkeypatch.delenv("CLOUDWIRE_UNSET_VAR", raising=False)
        config = CredentialsConfig(identity="id", credential="$CLOUDWIRE_UNSET_VAR")
        assert config.credential == "$CLOUDWIRE_UNSET_VAR"

    def test_session_credentials(self):
        """Test a session token produces session credentials."""
        credentials = CredentialsConfig(identity="id", credential="c", session_token="t").to_credentials()
        assert isinstance(credentials, SessionCredentials)
        assert credentials.session_token == "t"

    def test_secret_not_in_repr(self):
        """Test the credential is hidden from repr."""
        assert "s3cret" not in repr(CredentialsConfig(identity="id", credential="s3cret"))


class TestCloudwireConfig:
    """Tests for CloudwireConfig and its factories."""

    def test_from_yaml(self, monkeypatch):
        """Test loading a YAML document."""
        monkeypatch.setenv("CLOUDWIRE_TEST_SECRET", "from-env")
        config = CloudwireConfig.from_yaml(YAML_CONFIG)

        assert config.credentials.credential == "from-env"
        assert config.retry.max_retries == 3
        assert config.retry.delay_start == 100
        assert config.retry.max_rate_limit_wait == 30_000
        assert config.network.timeout == 5
        assert config.logging.trace_signatures is True

    def test_from_yaml_file(self, tmp_path: Path):
        """Test loading a YAML file."""
        path = tmp_path / "cloudwire.yaml"
        path.write_text("retry:\n  max_retries: 1\n")
        assert CloudwireConfig.from_yaml_file(path).retry.max_retries == 1

    def test_empty_yaml(self):
        """Test an empty document gives the defaults."""
        assert CloudwireConfig.from_yaml("").retry.max_retries == 5

    def test_to_yaml_roundtrip(self):
        """Test serialization back to YAML."""
        config = CloudwireConfig(aws=AwsConfig(api_version="2011-06-15", endpoint="https://sts.amazonaws.com"))
        assert CloudwireConfig.from_yaml(config.to_yaml()).aws.api_version == "2011-06-15"

    def test_aws_signer(self, monkeypatch):
        """Test the SigV4 signer factory."""
        monkeypatch.setenv("CLOUDWIRE_TEST_SECRET", "from-env")
        signer = CloudwireConfig.from_yaml(YAML_CONFIG).aws_signer()
        assert isinstance(signer, FormSignerV4)
        assert signer.api_version == "2010-05-08"

    def test_aws_signer_requires_section(self):
        """Test the signer factory needs the aws section and credentials."""
        with pytest.raises(ValueError, match="aws"):
            CloudwireConfig().aws_signer()
        config = CloudwireConfig(aws=AwsConfig(api_version="v", endpoint="https://iam.amazonaws.com"))
        with pytest.raises(ValueError, match="credentials"):
            config.aws_signer()

    def test_azure_modes(self):
        """Test the Azure factory picks the configured mode."""
        credentials = {"identity": "myaccount", "credential": "a2V5"}
        key_auth = CloudwireConfig(credentials=credentials).azure_authentication()
        sas_config = CloudwireConfig(credentials=credentials, azure={"mode": "sas", "sas_token": "sv=1"})
        sas_auth = sas_config.azure_authentication()

        assert isinstance(key_auth, SharedKeyLiteAuthentication)
        assert isinstance(key_auth.mode, HeaderSigning)
        assert sas_auth.mode == QueryStringSigning("sv=1")

    def test_authorization_api(self):
        """Test the OAuth factory."""
        config = CloudwireConfig(
            credentials={"identity": "svc", "credential": "pem"},
            oauth={"endpoint": "https://oauth2.example.com/token", "jws_algorithm": "ES256"},
        )
        api = config.authorization_api(executor=object())
        assert isinstance(api, AuthorizationApi)
        assert api.algorithm is JwsAlgorithm.ES256

    def test_executors(self):
        """Test executor factories use the retry and network sections."""
        config = CloudwireConfig(retry={"max_retries": 1}, network={"timeout": 3, "user_agent": "tests/1.0"})
        executor = config.executor()
        assert isinstance(executor, HttpCommandExecutor)
        executor.close()
        assert isinstance(config.async_client(), AsyncHttpClient)

    def test_invalid_azure_mode(self):
        """Test unknown Azure modes are rejected."""
        with pytest.raises(ValidationError):
            CloudwireConfig(azure={"mode": "oauth"})
