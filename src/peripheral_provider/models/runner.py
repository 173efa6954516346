"""
GitLab runner models with type safety and wire compatibility.

This module defines the resource representation exchanged with the runner
registration API, the structured error payload it returns, the host-side
persisted state of a runner resource, and the provider configuration.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator


# Current wire shape of the runner resource. Shapes 1 (integer id, name,
# docker_image) and 2 (uuid plus integer id) are upgraded on decode.
RUNNER_SCHEMA_VERSION = 3

# Attributes a plan must carry before it can be sent to the API.
REQUIRED_PLAN_ATTRIBUTES = ("url", "token", "image")


class ErrorType(str, Enum):
    """
    Error kinds reported by the runner registration API.

    UNCHANGED is part of the API contract but no response path produces it;
    it is kept so payloads carrying it still decode.
    """

    ALREADY_EXISTS = "AlreadyExists"
    BAD_REQUEST = "BadRequest"
    CONNECTION_FAILED = "ConnectionFailed"
    FORBIDDEN = "Forbidden"
    INTERNAL_ERROR = "InternalError"
    INVALID_ARGUMENT = "InvalidArgument"
    NOT_FOUND = "NotFound"
    OTHER = "Other"
    UNCHANGED = "Unchanged"
    UNIMPLEMENTED = "Unimplemented"


class Error(BaseModel):
    """
    Structured error payload returned by the API.

    Built only from a non-success response body or, when the response
    cannot be classified, from the raw body itself.
    """

    model_config = ConfigDict(frozen=True)

    err_type: ErrorType = Field(
        ...,
        description="Error kind"
    )
    msg: str = Field(
        default="",
        description="Human-readable error message"
    )

    @model_validator(mode="before")
    @classmethod
    def fold_unknown_error_type(cls, data: Any) -> Any:
        """Map unrecognized error kinds to OTHER, keeping the raw kind in the message."""
        if not isinstance(data, dict):
            return data

        raw_type = data.get("err_type")
        # Non-string kinds are left for field validation to reject.
        if not isinstance(raw_type, str) or raw_type in {member.value for member in ErrorType}:
            return data

        data = dict(data)
        data["err_type"] = ErrorType.OTHER
        data["msg"] = f"{raw_type}: {data.get('msg', '')}"
        return data

    def __str__(self) -> str:
        return f"{self.err_type.value}: {self.msg}"


class GitLabRunner(BaseModel):
    """
    GitLab runner registration as exchanged with the API.

    The identifier is assigned by the remote system and is immutable from
    the client's point of view; every other field is replaceable through
    an update.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(
        default="",
        description="Runner identifier assigned by the API"
    )
    url: str = Field(
        default="",
        description="URL of the GitLab instance the runner registers with"
    )
    token: str = Field(
        default="",
        description="Runner authentication token"
    )
    description: str = Field(
        default="",
        description="Runner description"
    )
    image: str = Field(
        default="",
        description="Default container image for jobs"
    )
    tag_list: str = Field(
        default="",
        description="Comma-separated list of runner tags"
    )
    run_untagged: bool = Field(
        default=False,
        description="Whether the runner picks up untagged jobs"
    )
    token_issued_at: Optional[datetime] = Field(
        default=None,
        description="When the runner token was issued"
    )

    @model_validator(mode="before")
    @classmethod
    def upgrade_legacy_shape(cls, data: Any) -> Any:
        """Accept payloads written with earlier schema versions."""
        if not isinstance(data, dict):
            return data

        data = dict(data)
        legacy_image = data.pop("docker_image", None)
        if legacy_image is not None and "image" not in data:
            data["image"] = legacy_image

        legacy_name = data.pop("name", None)
        if legacy_name is not None and "description" not in data:
            data["description"] = legacy_name

        data.pop("uuid", None)

        runner_id = data.get("id")
        if isinstance(runner_id, int) and not isinstance(runner_id, bool):
            data["id"] = str(runner_id)

        return data

    def to_json(self) -> bytes:
        """Encode the runner in the current wire shape."""
        return self.model_dump_json(exclude_none=True).encode("utf-8")

    @classmethod
    def from_json(cls, payload: bytes) -> GitLabRunner:
        """Decode a runner from a JSON payload."""
        return cls.model_validate_json(payload)

    def tags(self) -> List[str]:
        """Return the tag list split into individual tags."""
        return [tag.strip() for tag in self.tag_list.split(",") if tag.strip()]


class GitLabRunnerState(BaseModel):
    """
    Host-side plan or persisted state of a runner resource.

    Every attribute may be null because the host can hold unknown values
    (an identifier before creation, or everything but the identifier after
    an import).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: Optional[str] = Field(
        default=None,
        description="GitLabRunner ID as provided by the API"
    )
    url: Optional[str] = Field(
        default=None,
        description="URL of GitLab instance for GitLabRunner"
    )
    token: Optional[str] = Field(
        default=None,
        description="Token for GitLabRunner registration"
    )
    description: Optional[str] = Field(
        default=None,
        description="Description of GitLabRunner"
    )
    image: Optional[str] = Field(
        default=None,
        description="Docker image for GitLabRunner"
    )
    tag_list: Optional[str] = Field(
        default=None,
        description="Comma-separated list of tags for GitLabRunner"
    )
    run_untagged: Optional[bool] = Field(
        default=None,
        description="Allow untagged jobs"
    )
    token_issued_at: Optional[datetime] = Field(
        default=None,
        description="When the runner token was issued"
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_integer_id(cls, v: Any) -> Any:
        """Accept integer identifiers written by hand in plan files."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @classmethod
    def from_runner(cls, runner: GitLabRunner) -> GitLabRunnerState:
        """Build state from a runner returned by the API."""
        return cls(
            id=runner.id,
            url=runner.url,
            token=runner.token,
            description=runner.description,
            image=runner.image,
            tag_list=runner.tag_list,
            run_untagged=runner.run_untagged,
            token_issued_at=runner.token_issued_at,
        )

    def to_runner(self) -> GitLabRunner:
        """Convert to the wire representation; nulls become zero values."""
        return GitLabRunner(
            id=self.id or "",
            url=self.url or "",
            token=self.token or "",
            description=self.description or "",
            image=self.image or "",
            tag_list=self.tag_list or "",
            run_untagged=bool(self.run_untagged),
            token_issued_at=self.token_issued_at,
        )

    def missing_required(self) -> List[str]:
        """Return the required plan attributes that are null or empty."""
        return [name for name in REQUIRED_PLAN_ATTRIBUTES if not getattr(self, name)]


class ProviderConfiguration(BaseModel):
    """
    Provider configuration and authentication.

    Created once at host startup and read-only afterwards. Holds the API
    endpoint, the shared secret the bearer token is signed with, and the
    transport policy.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    endpoint: str = Field(
        ...,
        description="URL for the peripheral API"
    )
    token: SecretStr = Field(
        ...,
        description="Shared secret used to sign access tokens"
    )
    issuer: str = Field(
        default="peripheral",
        min_length=1,
        description="Issuer claim of minted access tokens"
    )
    token_ttl_seconds: int = Field(
        default=3600,
        gt=0,
        description="Lifetime of minted access tokens"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Transport timeout for API requests"
    )
    tls_verify: bool = Field(
        default=True,
        description="Verify TLS certificates"
    )
    ca_cert_path: Optional[str] = Field(
        default=None,
        description="Path to CA certificate for TLS verification"
    )
    log_level: str = Field(
        default="INFO",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        """Validate endpoint URL format."""
        parsed = urlparse(v.strip())
        if parsed.scheme not in ("http", "https"):
            raise ValueError("endpoint must use http:// or https://")
        if not parsed.netloc:
            raise ValueError("endpoint must include a hostname")
        return v.strip()

    @field_validator("token")
    @classmethod
    def validate_token(cls, v: SecretStr) -> SecretStr:
        """Reject blank signing secrets."""
        if not v.get_secret_value().strip():
            raise ValueError("token must not be blank")
        return v

    def summary(self) -> Dict[str, Any]:
        """Return a loggable view of the configuration without secrets."""
        return {
            "endpoint": self.endpoint,
            "issuer": self.issuer,
            "token_ttl_seconds": self.token_ttl_seconds,
            "timeout_seconds": self.timeout_seconds,
            "tls_verify": self.tls_verify,
            "log_level": self.log_level,
        }
