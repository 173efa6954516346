"""
Typed client for the runner registration API.

This module builds requests for the runner collection, sends them through
an injectable transport, and turns every response into a typed outcome:
a success payload, one of the declared structured error payloads, or an
unclassified response whose raw body is kept for the caller.
"""

import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol, Tuple, Union
from urllib.parse import quote, urljoin, urlparse

import httpx
import structlog
from prometheus_client import Histogram
from pydantic import ValidationError

from ..models.runner import Error, ErrorType, GitLabRunner


USER_AGENT = "peripheral-provider/0.1.0"

RequestEditor = Callable[[httpx.Request], None]
RunnerId = Union[str, int]

REQUEST_DURATION = Histogram(
    "peripheral_client_request_duration_seconds",
    "Runner API request duration in seconds",
    ["operation"]
)


class RunnerClientError(Exception):
    """Base class for failures raised by the runner client."""
    pass


class RunnerTransportError(RunnerClientError):
    """Raised when the transport fails to deliver a request or its response."""
    pass


class RunnerRequestError(RunnerClientError):
    """Raised when a request cannot be built; nothing was sent."""
    pass


class RunnerDecodeError(RunnerClientError):
    """Raised when a JSON response on a declared status does not decode."""
    pass


class Transport(Protocol):
    """Anything able to send a request; ``httpx.AsyncClient`` qualifies."""

    async def send(self, request: httpx.Request, *, stream: bool = False) -> httpx.Response:
        ...


@dataclass(frozen=True)
class OperationSpec:
    """Static description of one API operation."""

    name: str
    method: str
    path: str
    success_status: int
    error_statuses: Tuple[int, ...]

    @property
    def takes_id(self) -> bool:
        return "{id}" in self.path


CREATE = OperationSpec("create", "POST", "/gitlab-runners", 201, (400, 500))
LIST = OperationSpec("list", "GET", "/gitlab-runners/list", 200, (404, 500))
READ = OperationSpec("read", "GET", "/gitlab-runners/{id}", 200, (404, 500))
UPDATE = OperationSpec("update", "PUT", "/gitlab-runners/{id}", 200, (404, 500))
DELETE = OperationSpec("delete", "DELETE", "/gitlab-runners/{id}", 200, (404, 500))

OPERATIONS = {operation.name: operation for operation in (CREATE, LIST, READ, UPDATE, DELETE)}


@dataclass(frozen=True)
class RunnerResponse:
    """
    Parsed outcome of one API call.

    At most one structured slot is populated: ``payload`` for the success
    status, or the entry of ``error_payloads`` for a declared error status.
    The raw body is always kept.
    """

    operation: OperationSpec
    status_code: int
    reason_phrase: str
    headers: Mapping[str, str]
    body: bytes
    payload: Optional[GitLabRunner] = None
    error_payloads: Mapping[int, Optional[Error]] = field(default_factory=dict)

    @property
    def status(self) -> str:
        """Status line text, e.g. ``404 Not Found``."""
        reason = self.reason_phrase
        if not reason:
            try:
                reason = HTTPStatus(self.status_code).phrase
            except ValueError:
                reason = ""
        return f"{self.status_code} {reason}".rstrip()

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @property
    def is_success(self) -> bool:
        return self.status_code == self.operation.success_status

    def error_payload(self, status_code: int) -> Optional[Error]:
        return self.error_payloads.get(status_code)

    def get_error(self) -> Optional[Error]:
        """
        Normalize the outcome into a single error, or None on success.

        Returns the structured payload for a declared error status and an
        OTHER error wrapping the raw body for anything unclassified.
        """
        if self.is_success:
            return None

        structured = self.error_payloads.get(self.status_code)
        if structured is not None:
            return structured

        return Error(err_type=ErrorType.OTHER, msg=self.text)


def encode_path_param(name: str, value: Any) -> str:
    """
    Serialize a path parameter in simple style as one path segment.

    Raises:
        RunnerRequestError: If the value is of an unsupported type, empty,
            a dot segment, or cannot be percent-encoded
    """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise RunnerRequestError(f"Path parameter {name} must be a string or integer")

    text = str(value)
    if not text:
        raise RunnerRequestError(f"Path parameter {name} must not be empty")
    if text in (".", ".."):
        raise RunnerRequestError(f"Path parameter {name} must not be a dot segment")

    try:
        return quote(text, safe="")
    except UnicodeEncodeError as e:
        raise RunnerRequestError(f"Path parameter {name} cannot be encoded: {e}") from e


def is_json_content_type(content_type: str) -> bool:
    return "json" in content_type.lower()


def parse_response(operation: OperationSpec, response: httpx.Response, body: bytes) -> RunnerResponse:
    """
    Classify a response by status code and content type.

    Args:
        operation: Operation the response belongs to
        response: Transport response (headers and status only are used)
        body: Fully read response body

    Returns:
        Typed outcome of the call

    Raises:
        RunnerDecodeError: If a JSON body on a declared status does not decode
    """
    status_code = response.status_code
    is_json = is_json_content_type(response.headers.get("content-type", ""))

    payload: Optional[GitLabRunner] = None
    error_payloads: Dict[int, Optional[Error]] = {code: None for code in operation.error_statuses}

    if is_json and status_code == operation.success_status:
        try:
            payload = GitLabRunner.from_json(body)
        except ValidationError as e:
            raise RunnerDecodeError(
                f"{operation.name}: cannot decode {status_code} response: {e}"
            ) from e
    elif is_json and status_code in error_payloads:
        try:
            error_payloads[status_code] = Error.model_validate_json(body)
        except ValidationError as e:
            raise RunnerDecodeError(
                f"{operation.name}: cannot decode {status_code} error response: {e}"
            ) from e

    return RunnerResponse(
        operation=operation,
        status_code=status_code,
        reason_phrase=response.reason_phrase,
        headers=dict(response.headers),
        body=body,
        payload=payload,
        error_payloads=error_payloads,
    )


class RunnerClient:
    """
    Client for the runner collection of the peripheral API.

    Every operation sends exactly one request: no retries, no caching.
    Operations are coroutines, so cancelling the calling task stops the
    call at the next network wait.
    """

    def __init__(self,
                 server: str,
                 transport: Optional[Transport] = None,
                 request_editors: Iterable[RequestEditor] = (),
                 timeout: float = 30.0,
                 verify: Any = True,
                 logger: Any = None) -> None:
        """
        Initialize runner client.

        Args:
            server: Base URL of the API, optionally with a path prefix
            transport: Object sending requests; defaults to an httpx.AsyncClient
            request_editors: Editors applied to every outgoing request, in order
            timeout: Timeout of the default transport in seconds
            verify: TLS verification setting of the default transport
            logger: Structured logger instance

        Raises:
            RunnerRequestError: If the server URL is invalid
        """
        self.logger = (logger or structlog.get_logger()).bind(component="runner_client")
        self.server = self._validate_and_normalize_server(server)
        self.request_editors: Tuple[RequestEditor, ...] = tuple(request_editors)

        self._owns_transport = transport is None
        self._transport: Transport = transport or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            verify=verify,
            follow_redirects=False,
        )

    async def create(self,
                     runner: GitLabRunner,
                     request_editors: Iterable[RequestEditor] = ()) -> RunnerResponse:
        """Register a runner; success is 201 with the created runner."""
        return await self._execute(CREATE, body=runner, request_editors=request_editors)

    async def list(self, request_editors: Iterable[RequestEditor] = ()) -> RunnerResponse:
        """Fetch the runner listing; success is 200."""
        return await self._execute(LIST, request_editors=request_editors)

    async def read(self,
                   runner_id: RunnerId,
                   request_editors: Iterable[RequestEditor] = ()) -> RunnerResponse:
        """Fetch one runner; success is 200."""
        return await self._execute(READ, runner_id=runner_id, request_editors=request_editors)

    async def update(self,
                     runner_id: RunnerId,
                     runner: GitLabRunner,
                     request_editors: Iterable[RequestEditor] = ()) -> RunnerResponse:
        """Replace a runner's attributes; success is 200 with the updated runner."""
        return await self._execute(UPDATE, runner_id=runner_id, body=runner, request_editors=request_editors)

    async def delete(self,
                     runner_id: RunnerId,
                     request_editors: Iterable[RequestEditor] = ()) -> RunnerResponse:
        """Delete a runner; success is 200 with the deleted runner."""
        return await self._execute(DELETE, runner_id=runner_id, request_editors=request_editors)

    def build_request(self,
                      operation: OperationSpec,
                      runner_id: Optional[RunnerId] = None,
                      body: Optional[GitLabRunner] = None) -> httpx.Request:
        """
        Build the request for an operation without editors applied.

        Raises:
            RunnerRequestError: If the id, URL or body cannot be encoded
        """
        path = operation.path
        if operation.takes_id:
            path = path.format(id=encode_path_param("id", runner_id))

        # Relative to the server so its path prefix is kept.
        if path.startswith("/"):
            path = "." + path
        url = urljoin(self.server, path)

        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        content: Optional[bytes] = None
        if body is not None:
            try:
                content = body.to_json()
            except (TypeError, ValueError) as e:
                raise RunnerRequestError(f"{operation.name}: cannot encode request body: {e}") from e
            headers["Content-Type"] = "application/json"

        try:
            return httpx.Request(operation.method, url, headers=headers, content=content)
        except httpx.InvalidURL as e:
            raise RunnerRequestError(f"{operation.name}: invalid request URL {url}: {e}") from e

    def apply_editors(self,
                      request: httpx.Request,
                      request_editors: Iterable[RequestEditor] = ()) -> None:
        """
        Apply client-level then per-call editors in registration order.

        Raises:
            RunnerRequestError: On the first editor failure
        """
        for editor in (*self.request_editors, *request_editors):
            try:
                editor(request)
            except Exception as e:
                raise RunnerRequestError(f"Request editor rejected request: {e}") from e

    async def aclose(self) -> None:
        """Release the transport if this client created it."""
        if self._owns_transport:
            await self._transport.aclose()

    async def __aenter__(self) -> "RunnerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _execute(self,
                       operation: OperationSpec,
                       runner_id: Optional[RunnerId] = None,
                       body: Optional[GitLabRunner] = None,
                       request_editors: Iterable[RequestEditor] = ()) -> RunnerResponse:
        request = self.build_request(operation, runner_id=runner_id, body=body)
        self.apply_editors(request, request_editors)

        started = time.perf_counter()
        try:
            response = await self._transport.send(request, stream=True)
        except httpx.RequestError as e:
            self.logger.warning(
                "Runner API request failed",
                operation=operation.name,
                method=request.method,
                url=str(request.url),
                error=str(e)
            )
            raise RunnerTransportError(f"{operation.name} request failed: {e}") from e

        try:
            response_body = await response.aread()
        except (httpx.RequestError, httpx.StreamError) as e:
            self.logger.warning(
                "Runner API response read failed",
                operation=operation.name,
                url=str(request.url),
                error=str(e)
            )
            raise RunnerTransportError(f"{operation.name} response read failed: {e}") from e
        finally:
            await response.aclose()

        REQUEST_DURATION.labels(operation=operation.name).observe(time.perf_counter() - started)
        self.logger.debug(
            "Runner API request",
            operation=operation.name,
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            response_size=len(response_body)
        )

        return parse_response(operation, response, response_body)

    def _validate_and_normalize_server(self, server: str) -> str:
        """Validate the server URL and ensure a trailing slash."""
        if not server or not server.strip():
            raise RunnerRequestError("Server URL is required")

        server = server.strip()
        parsed = urlparse(server)

        if parsed.scheme not in ("http", "https"):
            raise RunnerRequestError("Server URL must use HTTP or HTTPS")

        if not parsed.netloc:
            raise RunnerRequestError("Server URL must include hostname")

        if parsed.scheme == "http" and parsed.hostname not in ("localhost", "127.0.0.1", "::1"):
            self.logger.warning("Plain HTTP server URL - credentials sent unencrypted", server=server)

        if not server.endswith("/"):
            server += "/"
        return server
