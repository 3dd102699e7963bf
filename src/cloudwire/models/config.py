"""Pydantic configuration models for cloudwire."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from ..http.client import AsyncHttpClient
from ..http.executor import HttpCommandExecutor
from ..http.retry import (
    DEFAULT_BACKOFF_POW,
    DEFAULT_DELAY_START_MS,
    DEFAULT_MAX_RATE_LIMIT_WAIT_MS,
    DEFAULT_RETRY_COUNT_LIMIT,
    BackoffLimitedRetryHandler,
    DelegatingRetryHandler,
    RetryAfterRateLimitHandler,
)
from ..signing.aws import AWSServiceAndRegion, FormSignerV4
from ..signing.azure import HeaderSigning, QueryStringSigning, SharedKeyLiteAuthentication
from ..signing.credentials import Credentials, CredentialsSupplier, SessionCredentials, static_credentials
from ..signing.oauth import AuthorizationApi, CommandExecutor, JwsAlgorithm


class Duration(int):
    """
    Custom type that parses human-readable durations into milliseconds.

    Accepts:
        - Integers (milliseconds)
        - Strings like '500ms', '2s', '2m', '1h'

    Examples:
        >>> Duration._parse('500ms')
        500
        >>> Duration._parse('2s')
        2000
        >>> Duration._parse(120)
        120
    """

    @classmethod
    def __get_pydantic_core_schema__(cls, source: Any, handler: Any) -> Any:
        from pydantic_core import core_schema

        return core_schema.no_info_plain_validator_function(cls._parse)

    @classmethod
    def _parse(cls, v: Any) -> int:
        if isinstance(v, bool):
            raise ValueError(f"Invalid duration: {v}")
        if isinstance(v, int):
            return v
        if isinstance(v, str):
            v = v.lower().strip()
            # Order matters: "ms" must be checked before "m" and "s"
            units = [("ms", 1), ("s", 1000), ("m", 60 * 1000), ("h", 60 * 60 * 1000)]
            for unit, mult in units:
                if v.endswith(unit):
                    num_str = v[: -len(unit)].strip()
                    try:
                        return int(float(num_str) * mult)
                    except ValueError as err:
                        raise ValueError(f"Invalid number in duration: {v}") from err
            try:
                return int(v)
            except ValueError:
                pass
        raise ValueError(f"Invalid duration: {v}. Use format like '500ms', '2s', '2m', or integer milliseconds.")


def _expand_env_var(value: Optional[str]) -> Optional[str]:
    """Expand environment variable references in a string.

    Supports $VAR and ${VAR} syntax. Returns original value if
    the env var is not set.
    """
    if value is None:
        return None

    pattern = r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)"

    def replace(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        return os.environ.get(var_name, match.group(0))

    return re.sub(pattern, replace, value)


class RetryConfig(BaseModel):
    """Configuration for backoff and rate limit retries."""

    max_retries: int = Field(DEFAULT_RETRY_COUNT_LIMIT, ge=0, description="Maximum retries for one command")
    delay_start: Duration = Field(
        DEFAULT_DELAY_START_MS,
        description="Base backoff period (e.g., '50ms', '1s')",
    )
    backoff_pow: int = Field(DEFAULT_BACKOFF_POW, ge=1, description="Exponent applied to the failure count")
    max_backoff_period: Optional[Duration] = Field(
        None,
        description="Ceiling for a single backoff delay (None = 10x delay_start)",
    )
    max_rate_limit_wait: Duration = Field(
        DEFAULT_MAX_RATE_LIMIT_WAIT_MS,
        description="Longest server-requested wait to honour on a 429",
    )

    model_config = {"extra": "forbid"}

    def build_handler(self) -> DelegatingRetryHandler:
        """Build the retry handler described by this config."""
        return DelegatingRetryHandler(
            backoff_handler=BackoffLimitedRetryHandler(
                retry_count_limit=self.max_retries,
                delay_start_ms=self.delay_start,
                backoff_pow=self.backoff_pow,
                max_period_ms=self.max_backoff_period,
            ),
            rate_limit_handler=RetryAfterRateLimitHandler(
                retry_count_limit=self.max_retries,
                max_rate_limit_wait_ms=self.max_rate_limit_wait,
            ),
        )


class NetworkConfig(BaseModel):
    """Configuration for the HTTP executors."""

    proxy: Optional[str] = Field(None, description="HTTP/HTTPS proxy URL (async client only)")
    user_agent: Optional[str] = Field(None, description="Custom User-Agent header")
    timeout: float = Field(30.0, gt=0, description="Request timeout in seconds")

    model_config = {"extra": "forbid"}


class CredentialsConfig(BaseModel):
    """Credentials for a signer.

    Supports environment variable expansion using $VAR or ${VAR} syntax,
    so secrets can stay out of the config file:
        credential: ${AWS_SECRET_ACCESS_KEY}
    """

    identity: str = Field(..., description="Access key id, account name or client id")
    credential: str = Field(..., repr=False, description="Secret key, shared key, SAS token or private key PEM")
    session_token: Optional[str] = Field(None, repr=False, description="Session token for temporary credentials")

    model_config = {"extra": "forbid"}

    def model_post_init(self, __context: object) -> None:
        """Expand environment variables after init."""
        object.__setattr__(self, "identity", _expand_env_var(self.identity))
        object.__setattr__(self, "credential", _expand_env_var(self.credential))
        if self.session_token:
            object.__setattr__(self, "session_token", _expand_env_var(self.session_token))

    def to_credentials(self) -> Credentials:
        if self.session_token:
            return SessionCredentials(self.identity, self.credential, self.session_token)
        return Credentials(self.identity, self.credential)

    def supplier(self) -> CredentialsSupplier:
        return static_credentials(self.to_credentials())


class AwsConfig(BaseModel):
    """Configuration for AWS Signature Version 4 form signing."""

    api_version: str = Field(..., description="Query API version added as the Version form parameter")
    endpoint: str = Field(..., description="Provider endpoint the service name is read from")

    model_config = {"extra": "forbid"}


class AzureConfig(BaseModel):
    """Configuration for Azure Storage authentication."""

    mode: Literal["key", "sas"] = Field("key", description="SharedKeyLite header or Shared Access Signature")
    sas_token: Optional[str] = Field(
        None,
        repr=False,
        description="SAS token (None = use the credential of the credentials section)",
    )

    model_config = {"extra": "forbid"}

    def model_post_init(self, __context: object) -> None:
        if self.sas_token:
            object.__setattr__(self, "sas_token", _expand_env_var(self.sas_token))


class OAuthConfig(BaseModel):
    """Configuration for the OAuth2 token endpoint."""

    endpoint: str = Field(..., description="Token endpoint URL")
    jws_algorithm: JwsAlgorithm = Field(JwsAlgorithm.RS256, description="Algorithm used to sign assertions")
    audience: Optional[str] = Field(None, description="Assertion audience (default: the endpoint)")
    scope: Optional[str] = Field(None, description="Requested scope")
    resource: Optional[str] = Field(None, description="Requested resource, for client credential grants")
    certificate: Optional[Path] = Field(None, description="PEM certificate for client assertions")

    model_config = {"extra": "forbid"}


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field("INFO", description="Logging level")
    trace_signatures: bool = Field(False, description="Log requests and strings to sign seen by the signers")
    log_file: Optional[Path] = Field(None, description="Log file path")

    model_config = {"extra": "forbid"}


class CloudwireConfig(BaseModel):
    """
    Root configuration model for cloudwire.

    Example:
        config = CloudwireConfig(
            credentials=CredentialsConfig(identity="AKID", credential="$AWS_SECRET"),
            aws=AwsConfig(api_version="2010-05-08", endpoint="https://iam.amazonaws.com"),
        )
        signer = config.aws_signer()

    YAML format:
        credentials:
          identity: AKID
          credential: ${AWS_SECRET_ACCESS_KEY}
        aws:
          api_version: "2010-05-08"
          endpoint: https://iam.amazonaws.com
        retry:
          max_retries: 3
          delay_start: 100ms
    """

    credentials: Optional[CredentialsConfig] = Field(None, description="Credentials used by the signers")
    retry: RetryConfig = Field(default_factory=RetryConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    aws: Optional[AwsConfig] = Field(None, description="AWS form signing settings")
    azure: Optional[AzureConfig] = Field(None, description="Azure Storage settings")
    oauth: Optional[OAuthConfig] = Field(None, description="OAuth2 token endpoint settings")
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}

    def to_yaml(self) -> str:
        """Serialize config to YAML string."""
        import yaml

        return yaml.dump(self.model_dump(mode="json", exclude_none=True), default_flow_style=False)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> CloudwireConfig:
        """Load config from YAML string."""
        import yaml

        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)

    @classmethod
    def from_yaml_file(cls, path: Path) -> CloudwireConfig:
        """Load config from YAML file."""
        return cls.from_yaml(Path(path).read_text())

    def _require_credentials(self) -> CredentialsConfig:
        if self.credentials is None:
            raise ValueError("no credentials configured")
        return self.credentials

    def aws_signer(self) -> FormSignerV4:
        """Build a SigV4 form signer from the aws and credentials sections."""
        if self.aws is None:
            raise ValueError("no aws section configured")
        return FormSignerV4(
            api_version=self.aws.api_version,
            credentials_supplier=self._require_credentials().supplier(),
            service_and_region=AWSServiceAndRegion(self.aws.endpoint),
        )

    def azure_authentication(self) -> SharedKeyLiteAuthentication:
        """Build the Azure Storage filter from the azure and credentials sections."""
        azure = self.azure or AzureConfig()
        mode = QueryStringSigning(azure.sas_token) if azure.mode == "sas" else HeaderSigning()
        return SharedKeyLiteAuthentication(self._require_credentials().supplier(), mode=mode)

    def authorization_api(self, executor: CommandExecutor) -> AuthorizationApi:
        """Build the token endpoint client from the oauth and credentials sections."""
        if self.oauth is None:
            raise ValueError("no oauth section configured")
        certificate = self.oauth.certificate.read_text() if self.oauth.certificate else None
        return AuthorizationApi(
            self.oauth.endpoint,
            executor,
            self._require_credentials().supplier(),
            algorithm=self.oauth.jws_algorithm,
            certificate_pem=certificate,
        )

    def executor(self) -> HttpCommandExecutor:
        """Build a synchronous executor using the retry and network sections."""
        return HttpCommandExecutor(
            retry_handler=self.retry.build_handler(),
            timeout=self.network.timeout,
            user_agent=self.network.user_agent,
        )

    def async_client(self) -> AsyncHttpClient:
        """Build an async client using the retry and network sections."""
        return AsyncHttpClient(
            retry_handler=self.retry.build_handler(),
            user_agent=self.network.user_agent,
            proxy=self.network.proxy,
            default_timeout=self.network.timeout,
        )
