"""
User-visible diagnostics reported by lifecycle operations.

Diagnostics never raise: an operation records what went wrong and returns,
so the host can keep processing other resource instances.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .runner import ErrorType


class Severity(str, Enum):
    """Diagnostic severity."""

    ERROR = "error"
    WARNING = "warning"


class Diagnostic(BaseModel):
    """
    A single diagnostic entry.

    Classified API errors carry the error kind and HTTP status code;
    transport and request failures leave both unset.
    """

    model_config = ConfigDict(frozen=True)

    severity: Severity = Field(
        ...,
        description="Diagnostic severity"
    )
    summary: str = Field(
        ...,
        description="Short summary of the problem"
    )
    detail: str = Field(
        default="",
        description="Full description of the problem"
    )
    err_type: Optional[ErrorType] = Field(
        default=None,
        description="API error kind for classified errors"
    )
    status_code: Optional[int] = Field(
        default=None,
        description="HTTP status code for classified errors"
    )

    def __str__(self) -> str:
        return f"{self.severity.value}: {self.summary}: {self.detail}"


class Diagnostics:
    """Ordered collection of diagnostics for one operation."""

    def __init__(self, items: Optional[Iterable[Diagnostic]] = None) -> None:
        self._items: List[Diagnostic] = list(items or [])

    def add_error(self,
                  summary: str,
                  detail: str = "",
                  err_type: Optional[ErrorType] = None,
                  status_code: Optional[int] = None) -> None:
        self._items.append(Diagnostic(
            severity=Severity.ERROR,
            summary=summary,
            detail=detail,
            err_type=err_type,
            status_code=status_code,
        ))

    def add_warning(self, summary: str, detail: str = "") -> None:
        self._items.append(Diagnostic(severity=Severity.WARNING, summary=summary, detail=detail))

    def extend(self, other: Iterable[Diagnostic]) -> None:
        self._items.extend(other)

    def has_error(self) -> bool:
        return any(item.severity == Severity.ERROR for item in self._items)

    def errors(self) -> List[Diagnostic]:
        return [item for item in self._items if item.severity == Severity.ERROR]

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"Diagnostics({self._items!r})"
