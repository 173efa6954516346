"""
Lifecycle adapter for the GitLab runner resource.

This module maps the host's Create/Read/Update/Delete/Import lifecycle onto
the runner API client. Every operation either succeeds and returns state
taken entirely from the server's response, or fails with diagnostics and
leaves the prior state untouched.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, get_args

import structlog
from prometheus_client import Counter

from ..models.diagnostics import Diagnostics
from ..models.runner import REQUIRED_PLAN_ATTRIBUTES, GitLabRunner, GitLabRunnerState
from ..utils.runner_client import (
    RunnerClient,
    RunnerDecodeError,
    RunnerRequestError,
    RunnerResponse,
    RunnerTransportError,
)


LIFECYCLE_OPERATIONS = Counter(
    "peripheral_lifecycle_operations_total",
    "Total lifecycle operations on runner resources",
    ["operation", "result"]
)


@dataclass(frozen=True)
class LifecycleResult:
    """
    Outcome of one lifecycle operation.

    ``state`` is the state the host must persist afterwards: the new state
    on success, the prior state on failure, and None when the resource is
    absent.
    """

    state: Optional[GitLabRunnerState]
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    @property
    def has_error(self) -> bool:
        return self.diagnostics.has_error()


def _attribute_type(annotation: Any) -> str:
    args = get_args(annotation) or (annotation,)
    if bool in args:
        return "bool"
    if datetime in args:
        return "timestamp"
    return "string"


class GitLabRunnerResource:
    """
    GitLab runner resource implementation.

    Holds only the configured API client; no state is kept between calls,
    so the host may run operations on independent instances concurrently.
    """

    TYPE_SUFFIX = "_gitlab_runner"

    def __init__(self, client: Optional[RunnerClient] = None, logger: Any = None) -> None:
        self.client = client
        self.logger = (logger or structlog.get_logger()).bind(component="runner_resource")

    def metadata(self, provider_type_name: str) -> str:
        """Return the resource type name under the given provider."""
        return provider_type_name + self.TYPE_SUFFIX

    def schema(self) -> Dict[str, Dict[str, Any]]:
        """Return attribute declarations of the resource."""
        attributes: Dict[str, Dict[str, Any]] = {}
        for name, model_field in GitLabRunnerState.model_fields.items():
            attributes[name] = {
                "type": _attribute_type(model_field.annotation),
                "description": model_field.description or "",
                "required": name in REQUIRED_PLAN_ATTRIBUTES,
            }
        return attributes

    def configure(self, provider_data: Any) -> Diagnostics:
        """
        Attach the client produced by provider configuration.

        A missing value is ignored so the host can configure resources
        before the provider itself is configured.
        """
        diagnostics = Diagnostics()
        if provider_data is None:
            return diagnostics

        if not isinstance(provider_data, RunnerClient):
            diagnostics.add_error(
                "Unexpected Resource Configure Type",
                f"Expected RunnerClient, got: {type(provider_data).__name__}. "
                "Report this issue to the provider developers."
            )
            return diagnostics

        self.client = provider_data
        return diagnostics

    async def create(self, plan: GitLabRunnerState) -> LifecycleResult:
        """Register a runner from the plan; absent -> present."""
        diagnostics = Diagnostics()
        if not self._check_plan(plan, diagnostics):
            return self._finish("create", None, diagnostics)

        client = self.client
        runner = await self._invoke(
            "create",
            lambda: client.create(plan.to_runner()),
            diagnostics,
        )
        if runner is None:
            return self._finish("create", None, diagnostics)

        self.logger.debug("created GitLabRunner", id=runner.id)
        return self._finish("create", GitLabRunnerState.from_runner(runner), diagnostics)

    async def read(self, state: GitLabRunnerState) -> LifecycleResult:
        """Refresh state from the API; present -> present."""
        diagnostics = Diagnostics()
        if not self._check_configured(diagnostics):
            return self._finish("read", state, diagnostics)

        client = self.client
        runner = await self._invoke(
            "read",
            lambda: client.read(state.id or ""),
            diagnostics,
        )
        if runner is None:
            return self._finish("read", state, diagnostics)

        self.logger.debug("read GitLabRunner", id=runner.id)
        return self._finish("read", GitLabRunnerState.from_runner(runner), diagnostics)

    async def update(self, plan: GitLabRunnerState, state: GitLabRunnerState) -> LifecycleResult:
        """
        Replace runner attributes with the plan; present -> present.

        The identifier always comes from the prior state: it is assigned by
        the API and cannot be changed through a plan.
        """
        diagnostics = Diagnostics()
        if not self._check_plan(plan, diagnostics):
            return self._finish("update", state, diagnostics)

        runner_id = state.id or ""
        if plan.id and plan.id != runner_id:
            diagnostics.add_warning(
                "Identifier Change Ignored",
                f"Planned id {plan.id!r} differs from the existing id {runner_id!r}; "
                "the existing id is kept."
            )

        body = plan.model_copy(update={"id": runner_id}).to_runner()
        client = self.client
        runner = await self._invoke(
            "update",
            lambda: client.update(runner_id, body),
            diagnostics,
        )
        if runner is None:
            return self._finish("update", state, diagnostics)

        self.logger.debug("updated GitLabRunner", id=runner_id)
        return self._finish("update", GitLabRunnerState.from_runner(runner), diagnostics)

    async def delete(self, state: GitLabRunnerState) -> LifecycleResult:
        """Delete the runner; present -> absent."""
        diagnostics = Diagnostics()
        if not self._check_configured(diagnostics):
            return self._finish("delete", state, diagnostics)

        client = self.client
        await self._invoke(
            "delete",
            lambda: client.delete(state.id or ""),
            diagnostics,
            require_payload=False,
        )
        if diagnostics.has_error():
            return self._finish("delete", state, diagnostics)

        self.logger.debug("deleted GitLabRunner", id=state.id)
        return self._finish("delete", None, diagnostics)

    async def import_state(self, identifier: str) -> LifecycleResult:
        """Seed state with an externally supplied id; the next read fills the rest."""
        self.logger.debug("imported GitLabRunner", id=identifier)
        return self._finish("import", GitLabRunnerState(id=identifier), Diagnostics())

    def _check_configured(self, diagnostics: Diagnostics) -> bool:
        if self.client is None:
            diagnostics.add_error(
                "Unconfigured Resource",
                "The resource has no API client; configure the provider first."
            )
            return False
        return True

    def _check_plan(self, plan: GitLabRunnerState, diagnostics: Diagnostics) -> bool:
        if not self._check_configured(diagnostics):
            return False

        missing = plan.missing_required()
        for name in missing:
            diagnostics.add_error(
                "Missing Required Attribute",
                f"The attribute {name!r} is required for GitLabRunner."
            )
        return not missing

    async def _invoke(self,
                      operation: str,
                      call: Callable[[], Awaitable[RunnerResponse]],
                      diagnostics: Diagnostics,
                      require_payload: bool = True) -> Optional[GitLabRunner]:
        """Run one client call and turn every failure into a diagnostic."""
        try:
            response = await call()
        except RunnerTransportError as e:
            diagnostics.add_error(
                "Client Error",
                f"Unable to talk to client, got error: {e}"
            )
            return None
        except RunnerRequestError as e:
            diagnostics.add_error(
                "Request Error",
                f"Unable to build {operation} request for GitLabRunner: {e}"
            )
            return None
        except RunnerDecodeError as e:
            diagnostics.add_error(
                "Response Decode Error",
                f"Unable to decode {operation} response for GitLabRunner: {e}"
            )
            return None

        error = response.get_error()
        if error is not None:
            diagnostics.add_error(
                f"Unable to {operation} GitLabRunner",
                f"got status: {response.status}, {error.err_type.value}: {error.msg}",
                err_type=error.err_type,
                status_code=response.status_code,
            )
            return None

        if response.payload is None and require_payload:
            diagnostics.add_error(
                "Unexpected Response",
                f"{operation} returned {response.status} without a GitLabRunner body: {response.text}",
                status_code=response.status_code,
            )
            return None

        return response.payload

    def _finish(self,
                operation: str,
                state: Optional[GitLabRunnerState],
                diagnostics: Diagnostics) -> LifecycleResult:
        result = "error" if diagnostics.has_error() else "success"
        LIFECYCLE_OPERATIONS.labels(operation=operation, result=result).inc()

        if diagnostics.has_error():
            self.logger.warning(
                "GitLabRunner operation failed",
                operation=operation,
                errors=[str(item) for item in diagnostics.errors()]
            )

        return LifecycleResult(state=state, diagnostics=diagnostics)
