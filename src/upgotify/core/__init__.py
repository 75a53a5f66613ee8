"""Shared configuration, logging and error types."""

from upgotify.core.config import (
    ConfigurationError,
    DistributorConfig,
    LoginFile,
    load_login_file,
)
from upgotify.core.exceptions import (
    AuthError,
    DistributorError,
    NetworkError,
    ServerError,
    StoreError,
    UpstreamError,
    UpstreamProtocolError,
)

__all__ = [
    "ConfigurationError",
    "DistributorConfig",
    "LoginFile",
    "load_login_file",
    "AuthError",
    "DistributorError",
    "NetworkError",
    "ServerError",
    "StoreError",
    "UpstreamError",
    "UpstreamProtocolError",
]
