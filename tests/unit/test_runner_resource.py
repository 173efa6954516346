"""
Runner resource lifecycle tests.

Tests for the create/read/update/delete/import mapping, diagnostics
produced on failure and the state handed back to the host.
"""

import asyncio
import json

import httpx
import pytest

from peripheral_provider.controllers.runner_resource import GitLabRunnerResource, LifecycleResult
from peripheral_provider.models.diagnostics import Severity
from peripheral_provider.models.runner import ErrorType, GitLabRunnerState
from peripheral_provider.utils.runner_client import RunnerClient


SERVER = "https://runrs.test"

RUNNER_PAYLOAD = {
    "id": "runner-1",
    "url": "https://gitlab.com/",
    "token": "glrt-0123456789-abcdefXYZ",
    "description": "my-runner",
    "image": "alpine:latest",
    "tag_list": "tag1,tag2",
    "run_untagged": False,
}


def make_resource(handler):
    """Build a resource whose client is served by ``handler``."""
    transport = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GitLabRunnerResource(client=RunnerClient(SERVER, transport=transport))


def state_of(payload):
    return GitLabRunnerState(**payload)


class TestGitLabRunnerResourceCreate:
    """Test resource creation."""

    def setup_method(self):
        """Set up test fixtures."""
        self.requests = []

    def test_create_takes_state_from_response(self):
        """Test that create stores the server-assigned id and attributes."""
        def handler(request):
            self.requests.append(request)
            return httpx.Response(201, json=dict(RUNNER_PAYLOAD, id="assigned-1", description="normalized"))

        resource = make_resource(handler)
        plan = state_of(dict(RUNNER_PAYLOAD, id=None))

        result = asyncio.run(resource.create(plan))

        assert isinstance(result, LifecycleResult)
        assert not result.has_error
        assert result.state.id == "assigned-1"
        assert result.state.description == "normalized"
        assert len(self.requests) == 1
        assert json.loads(self.requests[0].content)["id"] == ""

    def test_create_failure_leaves_resource_absent(self):
        """Test that a rejected create yields no state and one diagnostic."""
        def handler(request):
            return httpx.Response(400, json={"err_type": "BadRequest", "msg": "invalid image"})

        resource = make_resource(handler)

        result = asyncio.run(resource.create(state_of(RUNNER_PAYLOAD)))

        assert result.state is None
        errors = result.diagnostics.errors()
        assert len(errors) == 1
        assert errors[0].summary == "Unable to create GitLabRunner"
        assert errors[0].detail == "got status: 400 Bad Request, BadRequest: invalid image"
        assert errors[0].err_type == ErrorType.BAD_REQUEST
        assert errors[0].status_code == 400

    def test_missing_required_attributes(self):
        """Test that a plan without required attributes is never sent."""
        def handler(request):
            self.requests.append(request)
            return httpx.Response(201, json=RUNNER_PAYLOAD)

        resource = make_resource(handler)

        result = asyncio.run(resource.create(GitLabRunnerState(url="https://gitlab.com/")))

        assert self.requests == []
        assert result.state is None
        assert [item.summary for item in result.diagnostics.errors()] == [
            "Missing Required Attribute",
            "Missing Required Attribute",
        ]

    def test_success_without_body(self):
        """Test a success status that carries no runner."""
        def handler(request):
            return httpx.Response(201, text="ok", headers={"content-type": "text/plain"})

        resource = make_resource(handler)

        result = asyncio.run(resource.create(state_of(RUNNER_PAYLOAD)))

        assert result.state is None
        assert result.diagnostics.errors()[0].summary == "Unexpected Response"

    def test_decode_failure(self):
        """Test that a malformed success body is reported, not raised."""
        def handler(request):
            return httpx.Response(201, content=b"{", headers={"content-type": "application/json"})

        resource = make_resource(handler)

        result = asyncio.run(resource.create(state_of(RUNNER_PAYLOAD)))

        assert result.state is None
        assert result.diagnostics.errors()[0].summary == "Response Decode Error"


class TestGitLabRunnerResourceRead:
    """Test resource refresh."""

    def test_read_refreshes_state(self):
        """Test that read replaces state with the server's view."""
        def handler(request):
            assert request.url.path == "/gitlab-runners/runner-1"
            return httpx.Response(200, json=dict(RUNNER_PAYLOAD, tag_list="tag3"))

        resource = make_resource(handler)

        result = asyncio.run(resource.read(state_of(RUNNER_PAYLOAD)))

        assert not result.has_error
        assert result.state.tag_list == "tag3"

    def test_read_not_found_keeps_prior_state(self):
        """Test that a 404 reports the structured error and keeps state."""
        def handler(request):
            return httpx.Response(404, json={"err_type": "NotFound", "msg": "no such runner"})

        resource = make_resource(handler)
        prior = state_of(RUNNER_PAYLOAD)

        result = asyncio.run(resource.read(prior))

        assert result.state == prior
        errors = result.diagnostics.errors()
        assert len(errors) == 1
        assert errors[0].summary == "Unable to read GitLabRunner"
        assert "NotFound" in errors[0].detail
        assert "no such runner" in errors[0].detail
        assert errors[0].err_type == ErrorType.NOT_FOUND

    def test_read_unclassified_response(self):
        """Test that an unexpected status keeps the raw body in the diagnostic."""
        def handler(request):
            return httpx.Response(502, text="<html>bad gateway</html>", headers={"content-type": "text/html"})

        resource = make_resource(handler)

        result = asyncio.run(resource.read(state_of(RUNNER_PAYLOAD)))

        error = result.diagnostics.errors()[0]
        assert error.err_type == ErrorType.OTHER
        assert error.status_code == 502
        assert "<html>bad gateway</html>" in error.detail

    def test_read_with_corrupt_encoding_keeps_prior_state(self):
        """Test that an undecodable compressed body is reported as a client error."""
        def handler(request):
            return httpx.Response(
                200,
                headers={"content-type": "application/json", "content-encoding": "gzip"},
                content=b"not gzip at all",
            )

        resource = make_resource(handler)
        prior = state_of(RUNNER_PAYLOAD)

        result = asyncio.run(resource.read(prior))

        assert result.state == prior
        assert result.diagnostics.errors()[0].summary == "Client Error"

    def test_read_with_malformed_error_kind(self):
        """Test that a non-string error kind is reported as a decode failure."""
        def handler(request):
            return httpx.Response(404, json={"err_type": ["NotFound"], "msg": "x"})

        resource = make_resource(handler)
        prior = state_of(RUNNER_PAYLOAD)

        result = asyncio.run(resource.read(prior))

        assert result.state == prior
        assert result.diagnostics.errors()[0].summary == "Response Decode Error"

    def test_read_after_import_fills_attributes(self):
        """Test that import followed by read yields complete state."""
        def handler(request):
            return httpx.Response(200, json=dict(RUNNER_PAYLOAD, id="imported-7"))

        resource = make_resource(handler)

        imported = asyncio.run(resource.import_state("imported-7"))
        refreshed = asyncio.run(resource.read(imported.state))

        assert imported.state == GitLabRunnerState(id="imported-7")
        assert refreshed.state.id == "imported-7"
        assert refreshed.state.image == "alpine:latest"


class TestGitLabRunnerResourceUpdate:
    """Test resource update."""

    def setup_method(self):
        """Set up test fixtures."""
        self.requests = []

    def test_update_uses_id_from_prior_state(self):
        """Test that the prior id addresses the request and fills the body."""
        def handler(request):
            self.requests.append(request)
            return httpx.Response(200, json=dict(RUNNER_PAYLOAD, image="debian:12"))

        resource = make_resource(handler)
        plan = state_of(dict(RUNNER_PAYLOAD, id=None, image="debian:12"))

        result = asyncio.run(resource.update(plan, state_of(RUNNER_PAYLOAD)))

        assert not result.has_error
        assert result.state.image == "debian:12"
        assert self.requests[0].method == "PUT"
        assert self.requests[0].url.path == "/gitlab-runners/runner-1"
        assert json.loads(self.requests[0].content)["id"] == "runner-1"

    def test_planned_id_change_is_ignored(self):
        """Test that a differing planned id raises a warning only."""
        def handler(request):
            self.requests.append(request)
            return httpx.Response(200, json=RUNNER_PAYLOAD)

        resource = make_resource(handler)
        plan = state_of(dict(RUNNER_PAYLOAD, id="other"))

        result = asyncio.run(resource.update(plan, state_of(RUNNER_PAYLOAD)))

        assert not result.has_error
        assert [item.severity for item in result.diagnostics] == [Severity.WARNING]
        assert self.requests[0].url.path == "/gitlab-runners/runner-1"

    def test_connection_failure_keeps_prior_state(self):
        """Test that a transport failure is reported without an error kind."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        resource = make_resource(handler)
        prior = state_of(RUNNER_PAYLOAD)

        result = asyncio.run(resource.update(state_of(dict(RUNNER_PAYLOAD, image="debian:12")), prior))

        assert result.state == prior
        errors = result.diagnostics.errors()
        assert len(errors) == 1
        assert errors[0].summary == "Client Error"
        assert errors[0].detail.startswith("Unable to talk to client, got error: ")
        assert errors[0].err_type is None
        assert errors[0].status_code is None


class TestGitLabRunnerResourceDelete:
    """Test resource deletion."""

    def test_delete_removes_state(self):
        """Test that a successful delete leaves the resource absent."""
        def handler(request):
            assert request.method == "DELETE"
            return httpx.Response(200, json=RUNNER_PAYLOAD)

        resource = make_resource(handler)

        result = asyncio.run(resource.delete(state_of(RUNNER_PAYLOAD)))

        assert not result.has_error
        assert result.state is None

    def test_delete_failure_keeps_state(self):
        """Test that a failed delete keeps the resource present."""
        def handler(request):
            return httpx.Response(500, json={"err_type": "InternalError", "msg": "db down"})

        resource = make_resource(handler)
        prior = state_of(RUNNER_PAYLOAD)

        result = asyncio.run(resource.delete(prior))

        assert result.state == prior
        assert result.diagnostics.errors()[0].err_type == ErrorType.INTERNAL_ERROR

    def test_delete_with_invalid_id(self):
        """Test that an id that cannot be encoded is reported before sending."""
        def handler(request):
            pytest.fail("request must not be sent")

        resource = make_resource(handler)

        result = asyncio.run(resource.delete(GitLabRunnerState(id="..")))

        assert result.diagnostics.errors()[0].summary == "Request Error"


class TestGitLabRunnerResourceSetup:
    """Test resource metadata, schema and configuration."""

    def setup_method(self):
        """Set up test fixtures."""
        self.resource = GitLabRunnerResource()

    def test_metadata(self):
        """Test the resource type name."""
        assert self.resource.metadata("peripheral") == "peripheral_gitlab_runner"

    def test_schema(self):
        """Test attribute declarations."""
        schema = self.resource.schema()

        assert set(schema) == set(GitLabRunnerState.model_fields)
        assert schema["run_untagged"]["type"] == "bool"
        assert schema["token_issued_at"]["type"] == "timestamp"
        assert schema["image"]["required"] is True
        assert schema["id"]["required"] is False
        assert schema["id"]["description"] == "GitLabRunner ID as provided by the API"

    def test_configure_ignores_missing_client(self):
        """Test that an absent provider value is a no-op."""
        diagnostics = self.resource.configure(None)

        assert len(diagnostics) == 0
        assert self.resource.client is None

    def test_configure_rejects_wrong_type(self):
        """Test that an unexpected provider value is reported."""
        diagnostics = self.resource.configure({"endpoint": SERVER})

        assert diagnostics.errors()[0].summary == "Unexpected Resource Configure Type"
        assert "dict" in diagnostics.errors()[0].detail
        assert self.resource.client is None

    def test_configure_attaches_client(self):
        """Test that a client is attached."""
        client = RunnerClient(SERVER, transport=httpx.AsyncClient())

        diagnostics = self.resource.configure(client)

        assert len(diagnostics) == 0
        assert self.resource.client is client

    def test_unconfigured_operations_fail(self):
        """Test that lifecycle calls without a client produce diagnostics."""
        prior = state_of(RUNNER_PAYLOAD)

        created = asyncio.run(self.resource.create(prior))
        read = asyncio.run(self.resource.read(prior))
        deleted = asyncio.run(self.resource.delete(prior))

        assert created.state is None
        assert read.state == prior
        assert deleted.state == prior
        for result in (created, read, deleted):
            assert result.diagnostics.errors()[0].summary == "Unconfigured Resource"
