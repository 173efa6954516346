"""
Resource controllers for the peripheral provider.

This package contains the lifecycle adapter mapping host operations onto
the runner API client.
"""

from .runner_resource import GitLabRunnerResource, LifecycleResult

__all__ = ["GitLabRunnerResource", "LifecycleResult"]
