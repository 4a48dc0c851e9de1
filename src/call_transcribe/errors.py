"""Typed pipeline failures carrying retryability and diagnostic context."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import ClassVar

HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVER_ERROR_MIN = 500
HTTP_CLIENT_ERROR_MIN = 400

_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "incorrect api key",
    "authentication",
    "access denied",
)
_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "insufficient_quota",
    "billing",
    "payment required",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "slow down",
    "throttl",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "connection aborted",
    "network error",
    "database is locked",
    "service unavailable",
    "bad gateway",
)


class ErrorKind(str, Enum):
    """Failure categories understood by the retry executor and orchestrator."""

    REMOTE_ACCESS = "remote_access"
    EXTERNAL_SERVICE = "external_service"
    VALIDATION = "validation"
    RESOURCE = "resource"


@dataclass(slots=True, eq=False)
class PipelineError(Exception):
    """Base typed failure.

    ``retryable`` is decided once, when the error is built, from the nature of
    the failure. ``context`` is frozen into a read-only mapping.
    """

    kind: ClassVar[ErrorKind]

    message: str
    code: str
    retryable: bool = False
    context: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.context = MappingProxyType(dict(self.context))

    def __str__(self) -> str:
        return self.message

    def to_log_fields(self) -> dict[str, object]:
        """Serialize the error for structured log records and run journals."""

        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": dict(self.context),
        }


@dataclass(slots=True, eq=False)
class RemoteAccessError(PipelineError):
    """Connect/list/download/delete failure against the remote store."""

    kind: ClassVar[ErrorKind] = ErrorKind.REMOTE_ACCESS

    retryable: bool = True

    @classmethod
    def connection_failed(cls, host: str, cause: BaseException) -> RemoteAccessError:
        return cls(
            message=f"Remote connection to {host} failed",
            code="remote_connection_failed",
            context={"host": host, "original_error": _cause_message(cause)},
        )

    @classmethod
    def authentication_failed(cls, host: str, username: str) -> RemoteAccessError:
        return cls(
            message=f"Remote authentication failed for {username}@{host}",
            code="remote_auth_failed",
            retryable=False,
            context={"host": host, "username": username},
        )

    @classmethod
    def list_failed(cls, remote_path: str, cause: BaseException) -> RemoteAccessError:
        return cls(
            message=f"Failed to list remote directory {remote_path}",
            code="remote_list_failed",
            context={"remote_path": remote_path, "original_error": _cause_message(cause)},
        )

    @classmethod
    def download_failed(
        cls,
        remote_path: str,
        local_path: str,
        cause: BaseException,
    ) -> RemoteAccessError:
        return cls(
            message=f"Failed to download remote file {remote_path}",
            code="remote_download_failed",
            context={
                "remote_path": remote_path,
                "local_path": local_path,
                "original_error": _cause_message(cause),
            },
        )

    @classmethod
    def delete_failed(cls, remote_path: str, cause: BaseException) -> RemoteAccessError:
        return cls(
            message=f"Failed to delete remote file {remote_path}",
            code="remote_delete_failed",
            context={"remote_path": remote_path, "original_error": _cause_message(cause)},
        )

    @classmethod
    def not_connected(cls, operation: str) -> RemoteAccessError:
        return cls(
            message=f"Remote store is not connected (operation: {operation})",
            code="remote_not_connected",
            retryable=False,
            context={"operation": operation},
        )


@dataclass(slots=True, eq=False)
class ExternalServiceError(PipelineError):
    """Transcription, transcoding, record-store or object-storage failure."""

    kind: ClassVar[ErrorKind] = ErrorKind.EXTERNAL_SERVICE

    retryable: bool = True

    @classmethod
    def from_failure(
        cls,
        *,
        service: str,
        operation: str,
        cause: BaseException | str,
        status_code: int | None = None,
        code: str | None = None,
        **context: object,
    ) -> ExternalServiceError:
        """Build an error whose retryability comes from ``classify_service_failure``."""

        original = _cause_message(cause)
        classification = classify_service_failure(status_code=status_code, message=original)
        return cls(
            message=f"{service} {operation} failed",
            code=code or f"{service}_{operation}_failed",
            retryable=classification.retryable,
            context={
                "service": service,
                "operation": operation,
                "status_code": status_code,
                "reason": classification.reason,
                "original_error": original,
                **context,
            },
        )

    @classmethod
    def transcription_failed(
        cls,
        file_path: str,
        cause: BaseException | str,
        status_code: int | None = None,
    ) -> ExternalServiceError:
        return cls.from_failure(
            service="transcription",
            operation="transcribe",
            cause=cause,
            status_code=status_code,
            code="transcription_api_error",
            file_path=file_path,
        )

    @classmethod
    def transcode_failed(
        cls,
        input_path: str,
        cause: BaseException | str,
        *,
        retryable: bool,
    ) -> ExternalServiceError:
        return cls(
            message="Audio transcoding failed",
            code="transcode_failed",
            retryable=retryable,
            context={"input_path": input_path, "original_error": _cause_message(cause)},
        )

    @classmethod
    def record_store_failed(
        cls,
        operation: str,
        cause: BaseException | str,
        *,
        retryable: bool,
        recording_name: str | None = None,
    ) -> ExternalServiceError:
        return cls(
            message=f"Record store {operation} failed",
            code="record_store_failed",
            retryable=retryable,
            context={
                "operation": operation,
                "recording_name": recording_name,
                "original_error": _cause_message(cause),
            },
        )

    @classmethod
    def object_storage_failed(
        cls,
        key: str,
        cause: BaseException | str,
        status_code: int | None = None,
    ) -> ExternalServiceError:
        return cls.from_failure(
            service="object_storage",
            operation="put",
            cause=cause,
            status_code=status_code,
            code="object_storage_put_failed",
            key=key,
        )

    @classmethod
    def rate_limited(cls, service: str, retry_after: float | None = None) -> ExternalServiceError:
        return cls(
            message=f"{service} rate limit exceeded",
            code="rate_limit_exceeded",
            retryable=True,
            context={"service": service, "retry_after": retry_after},
        )


@dataclass(slots=True, eq=False)
class ValidationError(PipelineError):
    """Input rejected before any external call; never retryable."""

    kind: ClassVar[ErrorKind] = ErrorKind.VALIDATION

    retryable: bool = field(default=False, init=False)

    @classmethod
    def file_too_large(cls, file_path: str, size_bytes: int, max_bytes: int) -> ValidationError:
        return cls(
            message="File exceeds maximum size limit",
            code="file_too_large",
            context={"file_path": file_path, "size_bytes": size_bytes, "max_bytes": max_bytes},
        )

    @classmethod
    def invalid_format(
        cls,
        file_path: str,
        extension: str,
        allowed: tuple[str, ...] = (),
    ) -> ValidationError:
        return cls(
            message="Invalid file format",
            code="invalid_format",
            context={"file_path": file_path, "extension": extension, "allowed": list(allowed)},
        )


@dataclass(slots=True, eq=False)
class ResourceError(PipelineError):
    """Local scratch-storage failure."""

    kind: ClassVar[ErrorKind] = ErrorKind.RESOURCE

    retryable: bool = True

    @classmethod
    def directory_create_failed(cls, path: str, cause: BaseException) -> ResourceError:
        return cls(
            message="Failed to create directory",
            code="dir_create_failed",
            context={"path": path, "original_error": _cause_message(cause)},
        )

    @classmethod
    def file_move_failed(
        cls,
        source_path: str,
        dest_path: str,
        cause: BaseException,
    ) -> ResourceError:
        return cls(
            message="Failed to move file",
            code="file_move_failed",
            context={
                "source_path": source_path,
                "dest_path": dest_path,
                "original_error": _cause_message(cause),
            },
        )

    @classmethod
    def file_write_failed(cls, path: str, cause: BaseException) -> ResourceError:
        return cls(
            message="Failed to write file",
            code="file_write_failed",
            context={"path": path, "original_error": _cause_message(cause)},
        )

    @classmethod
    def file_delete_failed(cls, path: str, cause: BaseException) -> ResourceError:
        return cls(
            message="Failed to delete file",
            code="file_delete_failed",
            context={"path": path, "original_error": _cause_message(cause)},
        )

    @classmethod
    def file_read_failed(cls, path: str, cause: BaseException) -> ResourceError:
        return cls(
            message="Failed to read file",
            code="file_read_failed",
            context={"path": path, "original_error": _cause_message(cause)},
        )


@dataclass(slots=True, frozen=True)
class ServiceFailureClassification:
    """Retry decision for one external-service failure."""

    retryable: bool
    reason: str
    matched_pattern: str | None = None


def classify_service_failure(
    *,
    status_code: int | None,
    message: str,
) -> ServiceFailureClassification:
    """Decide whether an external-service failure is worth retrying.

    HTTP status wins when present: 429 and 5xx are transient, other 4xx are
    permanent. Without a status the message is matched against ordered
    pattern tables; unknown failures default to retryable.
    """

    if status_code is not None:
        if status_code == HTTP_TOO_MANY_REQUESTS:
            return ServiceFailureClassification(retryable=True, reason="rate_limited")
        if status_code >= HTTP_SERVER_ERROR_MIN:
            return ServiceFailureClassification(retryable=True, reason="server_error")
        if status_code >= HTTP_CLIENT_ERROR_MIN:
            return ServiceFailureClassification(retryable=False, reason="client_error")

    haystack = message.lower()

    pattern = _first_match(haystack, _ACCESS_OR_AUTH_PATTERNS)
    if pattern is not None:
        return ServiceFailureClassification(
            retryable=False,
            reason="access_or_auth",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _BILLING_OR_QUOTA_PATTERNS)
    if pattern is not None:
        return ServiceFailureClassification(
            retryable=False,
            reason="billing_or_quota",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _RATE_LIMIT_PATTERNS)
    if pattern is not None:
        return ServiceFailureClassification(
            retryable=True,
            reason="rate_limited",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None:
        return ServiceFailureClassification(
            retryable=True,
            reason="transient",
            matched_pattern=pattern,
        )

    return ServiceFailureClassification(retryable=True, reason="unclassified")


def error_log_fields(error: BaseException) -> dict[str, object]:
    """Log fields for any exception, typed or not."""

    if isinstance(error, PipelineError):
        return error.to_log_fields()
    return {
        "kind": "unclassified",
        "code": type(error).__name__,
        "message": str(error),
        "retryable": True,
        "context": {},
    }


def _cause_message(cause: BaseException | str) -> str:
    if isinstance(cause, str):
        return cause
    return str(cause) or type(cause).__name__


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
