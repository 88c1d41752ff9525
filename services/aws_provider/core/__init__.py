"""
Core logic package.

Provides credential resolution, retry classification, request caching and
naming helpers, plus the logging entry point.
"""

from .credentials import CredentialCell, CredentialResolver, EnvironmentSnapshot
from .logging_config import setup_logging
from .naming import Naming
from .request_cache import RequestCache, RequestKey
from .retry import RetryPolicy, classify, describe_error, to_remote_call_error
from .utils import first_value, get_values

__all__ = [
    "CredentialCell",
    "CredentialResolver",
    "EnvironmentSnapshot",
    "Naming",
    "RequestCache",
    "RequestKey",
    "RetryPolicy",
    "classify",
    "describe_error",
    "to_remote_call_error",
    "first_value",
    "get_values",
    "setup_logging",
]
