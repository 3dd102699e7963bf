"""Request signers: AWS SigV4 forms, Azure SharedKeyLite/SAS and OAuth2 bearer tokens."""

from .aws import AWSServiceAndRegion, Aws4HeaderSigner, FormSignerV4
from .azure import HeaderSigning, QueryStringSigning, SharedKeyLiteAuthentication
from .credentials import Credentials, MemoizedCredentialsSupplier, SessionCredentials, static_credentials
from .oauth import (
    AuthorizationApi,
    BearerTokenAuthentication,
    Claims,
    ClientCredentialsClaims,
    JwsAlgorithm,
    Token,
    TokenSupplier,
)

__all__ = [
    "AWSServiceAndRegion",
    "Aws4HeaderSigner",
    "AuthorizationApi",
    "BearerTokenAuthentication",
    "Claims",
    "ClientCredentialsClaims",
    "Credentials",
    "FormSignerV4",
    "HeaderSigning",
    "JwsAlgorithm",
    "MemoizedCredentialsSupplier",
    "QueryStringSigning",
    "SessionCredentials",
    "SharedKeyLiteAuthentication",
    "Token",
    "TokenSupplier",
    "static_credentials",
]
