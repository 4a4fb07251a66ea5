"""Result envelopes returned by every public operation."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, model_validator


class OperationStatus(str, Enum):
    """Outcome of a content operation."""

    OK = "ok"
    FAILED = "failed"
    PARTIAL = "partial"  # disk mutation done, commit failed


class FileOperationResult(BaseModel):
    """Outcome of a file or record operation.

    ``data`` and ``error`` are never both set.  A ``partial`` result keeps
    the payload of the completed mutation and reports the commit failure in
    ``commit_error``.
    """

    status: OperationStatus
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    commit_hash: str | None = None
    commit_error: str | None = None

    @model_validator(mode="after")
    def _payload_or_error(self) -> FileOperationResult:
        if self.data is not None and self.error is not None:
            raise ValueError("result cannot carry both data and error")
        if self.status is OperationStatus.FAILED and self.error is None:
            raise ValueError("failed result requires an error")
        if self.status is OperationStatus.PARTIAL and self.commit_error is None:
            raise ValueError("partial result requires a commit error")
        return self

    @property
    def success(self) -> bool:
        return self.status is OperationStatus.OK

    @property
    def is_partial(self) -> bool:
        return self.status is OperationStatus.PARTIAL

    @classmethod
    def ok(cls, data: Any = None) -> FileOperationResult:
        return cls(status=OperationStatus.OK, data=data)

    @classmethod
    def failed(cls, error: str, code: str | None = None) -> FileOperationResult:
        return cls(status=OperationStatus.FAILED, error=error, error_code=code)


class GitOperationResult(BaseModel):
    """Outcome of a git operation: a commit hash or an error, plus a message."""

    success: bool
    hash: str | None = None
    error: str | None = None
    error_code: str | None = None
    message: str = ""

    @model_validator(mode="after")
    def _hash_or_error(self) -> GitOperationResult:
        if self.hash is not None and self.error is not None:
            raise ValueError("result cannot carry both hash and error")
        return self
