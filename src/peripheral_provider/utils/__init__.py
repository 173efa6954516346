"""
Utility modules for the peripheral provider.

This package contains the typed runner API client and the token signing
helpers used to authenticate against it.
"""

from .runner_client import (
    RunnerClient,
    RunnerClientError,
    RunnerDecodeError,
    RunnerRequestError,
    RunnerResponse,
    RunnerTransportError,
)
from .security import BearerTokenEditor, SecurityError, TokenSigner

__all__ = [
    "BearerTokenEditor",
    "RunnerClient",
    "RunnerClientError",
    "RunnerDecodeError",
    "RunnerRequestError",
    "RunnerResponse",
    "RunnerTransportError",
    "SecurityError",
    "TokenSigner",
]
