"""
DiaryFlow Backend — Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for every failure the diary can hit.
How:   Each exception carries a user-facing message and a context dict.
       Global handlers (registered in main.py) map them to HTTP responses.
       Recoverable failures are flagged `retryable`; their responses carry a
       retry action that replays the whole higher-level operation (a full
       save, a connection test, ...). Validation failures never do: the user
       has to change the input first.

Exception Hierarchy:
    DiaryFlowError (base)
    ├── ValidationError              → 400 (client can fix)
    │   ├── MediaFileNotFoundError
    │   ├── EmptyMediaFileError
    │   ├── MediaFileTooLargeError
    │   └── UnsupportedMediaError
    ├── AuthenticationError          → 401
    ├── NotFoundError                → 404
    ├── ConflictError                → 409
    ├── UploadBatchError             → 503 (retry: whole save)
    ├── StorageConnectionError       → 503 (retry)
    ├── TranscriptionServiceError    → 503 (retry)
    ├── WeatherServiceError          → 503 (retry)
    ├── CircuitBreakerOpenError      → 503 (retry later)
    └── DatabaseError                → 500 (retry)
"""

from typing import Any, Dict, List, Optional


class DiaryFlowError(Exception):
    """
    Base exception for all DiaryFlow application errors.

    Attributes:
        message:      User-facing error description (safe to return)
        context:      Debug info (logged, returned only for client-fixable errors)
        retryable:    Whether the response should offer a retry action
        retry_action: Name of the operation the retry replays
    """

    retryable: bool = False
    retry_action: Optional[str] = None

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(DiaryFlowError):
    """
    Raised when client input fails validation.

    HTTP: 400 Bad Request. Never retried automatically.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class MediaFileNotFoundError(ValidationError):
    """A selected or recorded file is no longer on local storage at save time."""

    def __init__(self, filename: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["filename"] = filename
        super().__init__(
            message=f"File no longer exists: {filename}",
            field="files",
            context=ctx,
        )
        self.filename = filename


class EmptyMediaFileError(ValidationError):
    """A file is zero bytes long, whatever its extension."""

    def __init__(self, filename: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["filename"] = filename
        super().__init__(
            message=f"File is empty: {filename}",
            field="files",
            context=ctx,
        )
        self.filename = filename


class MediaFileTooLargeError(ValidationError):
    """A file exceeds the size ceiling of its media kind."""

    def __init__(
        self,
        filename: str,
        kind: str,
        size_mb: float,
        ceiling_mb: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update(
            {
                "filename": filename,
                "kind": kind,
                "size_mb": round(size_mb, 1),
                "ceiling_mb": ceiling_mb,
            }
        )
        super().__init__(
            message=(
                f"{kind.capitalize()} file too large: {filename} is "
                f"{size_mb:.1f}MB (max {ceiling_mb}MB)"
            ),
            field="files",
            context=ctx,
        )
        self.filename = filename
        self.kind = kind
        self.size_mb = size_mb
        self.ceiling_mb = ceiling_mb


class UnsupportedMediaError(ValidationError):
    """The file format is not accepted by the receiving service."""

    def __init__(
        self,
        filename: str,
        allowed: List[str],
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"filename": filename, "allowed": allowed})
        super().__init__(
            message=(
                f"Format of '{filename}' is not supported. "
                f"Please use one of: {', '.join(a.upper() for a in allowed)}."
            ),
            field="file",
            context=ctx,
        )


class AuthenticationError(DiaryFlowError):
    """No authenticated user accompanies the request. HTTP: 401."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(DiaryFlowError):
    """
    Raised when a requested resource does not exist (or belongs to another user).

    HTTP: 404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(DiaryFlowError):
    """The resource is busy, e.g. a save is already running for the draft. HTTP: 409."""

    def __init__(
        self,
        message: str = "The request conflicts with an operation in progress",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UploadBatchError(DiaryFlowError):
    """
    At least one upload of a save's batch failed.

    HTTP: 503. The draft is left untouched and the retry replays the whole
    save, including files whose upload had already succeeded.
    """

    retryable = True
    retry_action = "save_entry"

    def __init__(
        self,
        message: str = "Some files failed to upload. Please try again.",
        failed_files: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        self.failed_files = failed_files or []
        ctx["failed_files"] = self.failed_files
        super().__init__(message=message, context=ctx)


class StorageConnectionError(DiaryFlowError):
    """The object storage backend could not be initialised or reached. HTTP: 503."""

    retryable = True
    retry_action = "initialize_storage"

    def __init__(
        self,
        message: str = "Media storage is unavailable. Please try again.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class TranscriptionServiceError(DiaryFlowError):
    """Speech-to-text failed after retries, or produced no text. HTTP: 503."""

    retryable = True
    retry_action = "transcribe"

    def __init__(
        self,
        message: str = "Voice transcription is temporarily unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class WeatherServiceError(DiaryFlowError):
    """The weather provider could not be reached or returned an error. HTTP: 503."""

    retryable = True
    retry_action = "fetch_weather"

    def __init__(
        self,
        message: str = "Weather data is temporarily unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class CircuitBreakerOpenError(DiaryFlowError):
    """
    Raised while a circuit breaker is OPEN for a third-party API.

    How circuit breaker works:
        CLOSED → failures increment counter
        → After N failures → OPEN (reject all calls for recovery_time seconds)
        → After recovery_time → HALF-OPEN (calls pass through again)
        → First recorded success → CLOSED; first recorded failure → OPEN again
    """

    retryable = True

    def __init__(
        self,
        service: str = "external service",
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"The {service} is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx.update({"service": service, "recovery_time": recovery_time})
        super().__init__(message=message, context=ctx)
        self.service = service
        self.recovery_time = recovery_time


class DatabaseError(DiaryFlowError):
    """
    Raised when database operations fail unexpectedly. HTTP: 500.

    The client always gets a generic message; details are logged server-side.
    """

    retryable = True

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
        retry_action: Optional[str] = None,
    ):
        super().__init__(message=message, context=context)
        if retry_action:
            self.retry_action = retry_action
