"""
Peripheral provider for GitLab runner registrations.

Manages GitLab CI runner registrations through the peripheral API, mapping
a host's resource lifecycle onto a typed REST client.

This package implements:
- A typed runner API client with per-operation response classification
- The runner resource lifecycle (create, read, update, delete, import)
- Bearer authentication with HS256 tokens minted from a shared secret
"""

__version__ = "0.1.0"

from .controllers.runner_resource import GitLabRunnerResource, LifecycleResult
from .models.runner import Error, ErrorType, GitLabRunner, GitLabRunnerState, ProviderConfiguration
from .provider import PeripheralProvider
from .utils.runner_client import RunnerClient, RunnerResponse

__all__ = [
    "Error",
    "ErrorType",
    "GitLabRunner",
    "GitLabRunnerResource",
    "GitLabRunnerState",
    "LifecycleResult",
    "PeripheralProvider",
    "ProviderConfiguration",
    "RunnerClient",
    "RunnerResponse",
]
