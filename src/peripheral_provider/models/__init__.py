"""
Data models for the peripheral provider.

This package contains the runner wire models, host-side state,
provider configuration and diagnostics.
"""

from .diagnostics import Diagnostic, Diagnostics, Severity
from .runner import (
    Error,
    ErrorType,
    GitLabRunner,
    GitLabRunnerState,
    ProviderConfiguration,
)

__all__ = [
    "Diagnostic",
    "Diagnostics",
    "Error",
    "ErrorType",
    "GitLabRunner",
    "GitLabRunnerState",
    "ProviderConfiguration",
    "Severity",
]
