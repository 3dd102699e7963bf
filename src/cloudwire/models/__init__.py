"""Cloudwire configuration models."""

from .config import (
    AwsConfig,
    AzureConfig,
    CloudwireConfig,
    CredentialsConfig,
    Duration,
    LoggingConfig,
    NetworkConfig,
    OAuthConfig,
    RetryConfig,
)

__all__ = [
    "AwsConfig",
    "AzureConfig",
    "CloudwireConfig",
    "CredentialsConfig",
    "Duration",
    "LoggingConfig",
    "NetworkConfig",
    "OAuthConfig",
    "RetryConfig",
]
