"""
errors.py - Error Code System

Every failure the dispatcher can produce maps onto one of these classes, and
each class renders into the structured `error` block of the response
envelope via `to_dict()`.

Error Code Structure:
- 1xxx: Validation errors
- 2xxx: Security / policy errors
- 3xxx: Runtime errors (target resolution, confirmation)
- 9xxx: External errors (sf CLI, REST API)

Usage:
    from sfmcp.core.errors import AccessDenied

    raise AccessDenied("prod")
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error category classification."""

    VALIDATION = "VALIDATION"
    SECURITY = "SECURITY"
    RUNTIME = "RUNTIME"
    EXTERNAL = "EXTERNAL"
    UNKNOWN = "UNKNOWN"


def _infer_category_from_code(code: str) -> ErrorCategory:
    """Infer error category from error code prefix (e.g. "2001" -> SECURITY)."""
    if not code or len(code) < 2:
        return ErrorCategory.UNKNOWN

    category_map = {
        "1": ErrorCategory.VALIDATION,
        "2": ErrorCategory.SECURITY,
        "3": ErrorCategory.RUNTIME,
        "9": ErrorCategory.EXTERNAL,
    }
    return category_map.get(code[0], ErrorCategory.UNKNOWN)


class ErrorCode(str, Enum):
    """Numbered error codes.

    - 1xxx: Validation errors
    - 2xxx: Security / policy errors
    - 3xxx: Runtime errors
    - 9xxx: External errors
    """

    # ==========================================================================
    # Validation Errors (1xxx)
    # ==========================================================================
    MALFORMED_INPUT = "1001"
    CONFIGURATION_INVALID = "1002"

    # ==========================================================================
    # Security Errors (2xxx)
    # ==========================================================================
    ACCESS_DENIED = "2001"
    READ_ONLY_BLOCKED = "2002"

    # ==========================================================================
    # Runtime Errors (3xxx)
    # ==========================================================================
    NO_TARGET_CONFIGURED = "3001"
    CONFIRMATION_DECLINED = "3002"
    CONFIRMATION_CANCELLED = "3003"
    OPERATION_NOT_FOUND = "3004"
    INTERNAL_ERROR = "3005"

    # ==========================================================================
    # External Errors (9xxx)
    # ==========================================================================
    EXTERNAL_RUNNER_FAILED = "9001"
    EXTERNAL_API_ERROR = "9002"
    EXTERNAL_UNAVAILABLE = "9003"


class SalesforceMCPError(Exception):
    """Base exception for the server.

    Attributes:
        message: Human-readable error description
        code: Error code from ErrorCode
        category: Error category from ErrorCategory
        details: Additional error context dictionary
    """

    kind: str = "SalesforceMCPError"

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code

        if category == ErrorCategory.UNKNOWN and code:
            category = _infer_category_from_code(code.value)

        self.category = category
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"code={self.code.value if self.code else None!r}, "
            f"category={self.category.value!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Structured detail for the envelope's `error` block."""
        return {
            "kind": self.kind,
            "name": self.kind,
            "message": self.message,
            "code": self.code.value if self.code else None,
            "category": self.category.value,
            "context": self.details or None,
        }


class ConfigurationError(SalesforceMCPError):
    """Malformed startup configuration. Fatal: the process must not serve."""

    kind = "ConfigurationError"

    def __init__(self, message: str, setting: str | None = None, value: Any = None):
        super().__init__(
            message=message,
            code=ErrorCode.CONFIGURATION_INVALID,
            details={"setting": setting, "value": value},
        )


class MalformedInput(SalesforceMCPError):
    """Arguments failed schema validation before reaching the dispatcher."""

    kind = "MalformedInput"

    def __init__(self, operation: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(
            message=f"Invalid arguments for {operation}",
            code=ErrorCode.MALFORMED_INPUT,
            details={"operation": operation, "errors": errors or []},
        )


class NoTargetConfigured(SalesforceMCPError):
    kind = "NoTargetConfigured"

    HINT = (
        "No target org specified and no default org is configured. "
        "Either provide 'targetOrg' or set a default with: sf config set target-org <alias>"
    )

    def __init__(self, cause: str | None = None):
        details = {"cause": cause} if cause else None
        super().__init__(message=self.HINT, code=ErrorCode.NO_TARGET_CONFIGURED, details=details)


class AccessDenied(SalesforceMCPError):
    kind = "AccessDenied"

    def __init__(self, target_org: str, message: str | None = None):
        self.target_org = target_org
        super().__init__(
            message=message
            or (
                f"Access denied: org '{target_org}' is not in the allowed orgs list. "
                "Update ALLOWED_ORGS to grant access."
            ),
            code=ErrorCode.ACCESS_DENIED,
            details={"targetOrg": target_org},
        )


class ReadOnlyBlocked(SalesforceMCPError):
    kind = "ReadOnlyBlocked"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(
            message=(
                f"Operation '{operation}' is blocked: server is running in read-only mode "
                "(READ_ONLY=true)."
            ),
            code=ErrorCode.READ_ONLY_BLOCKED,
            details={"operation": operation},
        )


class ConfirmationDeclined(SalesforceMCPError):
    kind = "ConfirmationDeclined"

    def __init__(self, reason: str = "declined by user"):
        super().__init__(
            message=f"Operation not confirmed: {reason}",
            code=ErrorCode.CONFIRMATION_DECLINED,
            details={"reason": reason},
        )


class ConfirmationCancelled(SalesforceMCPError):
    kind = "ConfirmationCancelled"

    def __init__(self, reason: str = "cancelled"):
        super().__init__(
            message=f"Operation not confirmed: {reason}",
            code=ErrorCode.CONFIRMATION_CANCELLED,
            details={"reason": reason},
        )


class OperationNotFound(SalesforceMCPError):
    kind = "OperationNotFound"

    def __init__(self, name: str, available: list[str] | None = None):
        details: dict[str, Any] = {"operation": name}
        if available:
            details["available"] = available
        super().__init__(
            message=f"Unknown operation: {name}",
            code=ErrorCode.OPERATION_NOT_FOUND,
            details=details,
        )


class ExternalRunnerFailure(SalesforceMCPError):
    """The sf CLI or the REST API failed.

    `name` is the platform's own error name (e.g. ``NoOrgFound``,
    ``INVALID_FIELD``); `exit_code` is the process exit status or HTTP status;
    `context` keeps whatever structured body the platform returned.
    """

    kind = "ExternalRunnerFailure"

    def __init__(
        self,
        message: str,
        name: str | None = None,
        exit_code: int | None = None,
        context: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.EXTERNAL_RUNNER_FAILED,
    ):
        self.name = name or self.kind
        self.exit_code = exit_code
        self.context = context or {}
        super().__init__(message=message, code=code, details=self.context)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["name"] = self.name
        payload["exitCode"] = self.exit_code
        return payload


class InternalError(ExternalRunnerFailure):
    """An unexpected exception inside an operation handler."""

    kind = "InternalError"

    def __init__(self, exc: BaseException):
        super().__init__(
            message=str(exc) or type(exc).__name__,
            name=type(exc).__name__,
            code=ErrorCode.INTERNAL_ERROR,
        )


__all__ = [
    "AccessDenied",
    "ConfigurationError",
    "ConfirmationCancelled",
    "ConfirmationDeclined",
    "ErrorCategory",
    "ErrorCode",
    "ExternalRunnerFailure",
    "InternalError",
    "MalformedInput",
    "NoTargetConfigured",
    "OperationNotFound",
    "ReadOnlyBlocked",
    "SalesforceMCPError",
]
