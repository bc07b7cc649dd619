"""
Error types for the TOON codec and the provider/tool layer.
"""

from enum import Enum
from typing import Any


class ToonError(Exception):
    """Base exception for TOON codec errors."""
    pass


class ParseErrorCause(str, Enum):
    MALFORMED_SCHEMA = "MALFORMED_SCHEMA"
    FIELD_COUNT_MISMATCH = "FIELD_COUNT_MISMATCH"
    ROW_COUNT_MISMATCH = "ROW_COUNT_MISMATCH"
    DATA_BEFORE_SCHEMA = "DATA_BEFORE_SCHEMA"
    PATH_CONFLICT = "PATH_CONFLICT"


class ToonParseError(ToonError):
    """Error parsing a TOON document. Carries the 1-based source line number."""

    def __init__(self, message: str, line_number: int, cause: ParseErrorCause, line: str | None = None):
        self.message = message
        self.line_number = line_number
        self.cause = cause
        self.line = line
        super().__init__(f"Line {line_number}: {message}")

    def to_dict(self) -> dict:
        return {
            "cause": self.cause.value,
            "line": self.line_number,
            "message": self.message,
        }


class ToonSerializeError(ToonError):
    """Input could not be serialized to TOON (wrong shape)."""
    pass


class ErrorCode(str, Enum):
    # Provider
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    PROVIDER_INIT_FAILED = "PROVIDER_INIT_FAILED"
    PROVIDER_LOAD_FAILED = "PROVIDER_LOAD_FAILED"

    # Endpoint / tool
    ENDPOINT_NOT_FOUND = "ENDPOINT_NOT_FOUND"
    ENDPOINT_EXECUTION_FAILED = "ENDPOINT_EXECUTION_FAILED"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_EXECUTION_ERROR = "TOOL_EXECUTION_ERROR"

    # Parameters
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    REQUIRED_PARAMETER_MISSING = "REQUIRED_PARAMETER_MISSING"
    INVALID_PARAMETER_TYPE = "INVALID_PARAMETER_TYPE"
    INVALID_PARAMETER_VALUE = "INVALID_PARAMETER_VALUE"

    # Upstream API
    API_REQUEST_FAILED = "API_REQUEST_FAILED"
    API_TIMEOUT = "API_TIMEOUT"
    API_RATE_LIMITED = "API_RATE_LIMITED"
    API_AUTHENTICATION_FAILED = "API_AUTHENTICATION_FAILED"
    HTTP_ERROR = "HTTP_ERROR"
    HTTP_CLIENT_ERROR = "HTTP_CLIENT_ERROR"
    HTTP_SERVER_ERROR = "HTTP_SERVER_ERROR"

    TOON_PARSE_ERROR = "TOON_PARSE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


_SEVERITY_BY_CODE = {
    ErrorCode.PROVIDER_INIT_FAILED: ErrorSeverity.CRITICAL,
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.PROVIDER_NOT_FOUND: ErrorSeverity.HIGH,
    ErrorCode.API_AUTHENTICATION_FAILED: ErrorSeverity.HIGH,
    ErrorCode.HTTP_SERVER_ERROR: ErrorSeverity.HIGH,
    ErrorCode.ENDPOINT_NOT_FOUND: ErrorSeverity.MEDIUM,
    ErrorCode.API_REQUEST_FAILED: ErrorSeverity.MEDIUM,
    ErrorCode.HTTP_CLIENT_ERROR: ErrorSeverity.MEDIUM,
    ErrorCode.TOON_PARSE_ERROR: ErrorSeverity.MEDIUM,
}

_USER_MESSAGES = {
    ErrorCode.PROVIDER_NOT_FOUND: "The requested data provider could not be found.",
    ErrorCode.ENDPOINT_NOT_FOUND: "The requested API endpoint could not be found.",
    ErrorCode.REQUIRED_PARAMETER_MISSING: "A required parameter is missing.",
    ErrorCode.API_RATE_LIMITED: "Upstream API rate limit exceeded. Please retry later.",
    ErrorCode.API_AUTHENTICATION_FAILED: "Upstream API authentication failed. Check the API key.",
    ErrorCode.TOON_PARSE_ERROR: "The TOON document could not be parsed.",
    ErrorCode.UNKNOWN_ERROR: "An unknown error occurred.",
}


class ProviderServiceError(Exception):
    """Base exception for provider, endpoint and tool errors."""

    default_code = ErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        context: dict[str, Any] | None = None,
        severity: ErrorSeverity | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context or {}
        self.severity = severity or _SEVERITY_BY_CODE.get(self.code, ErrorSeverity.LOW)

    @property
    def user_message(self) -> str:
        """Message safe to show to tool callers; falls back to the raw message."""
        return _USER_MESSAGES.get(self.code, self.message)

    def to_dict(self) -> dict:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "severity": self.severity.value,
            "context": self.context,
        }


class ProviderLoadError(ProviderServiceError):
    """Error loading a provider definition file."""
    default_code = ErrorCode.PROVIDER_LOAD_FAILED

    def __init__(self, message: str, code: ErrorCode | None = None, context: dict[str, Any] | None = None):
        super().__init__(message, code, context, severity=ErrorSeverity.HIGH)


class EndpointError(ProviderServiceError):
    """Error resolving or executing an endpoint."""
    default_code = ErrorCode.ENDPOINT_NOT_FOUND


class ParameterValidationError(ProviderServiceError):
    """Tool arguments do not satisfy the endpoint's parameters."""
    default_code = ErrorCode.INVALID_PARAMETERS

    def __init__(self, message: str, code: ErrorCode | None = None, context: dict[str, Any] | None = None):
        super().__init__(message, code, context, severity=ErrorSeverity.MEDIUM)


class UpstreamApiError(ProviderServiceError):
    """Error calling a provider's upstream HTTP API."""
    default_code = ErrorCode.API_REQUEST_FAILED


def http_status_to_error_code(status: int) -> ErrorCode:
    """Map an upstream HTTP status code to an ErrorCode."""
    if status in (401, 403):
        return ErrorCode.API_AUTHENTICATION_FAILED
    if status == 429:
        return ErrorCode.API_RATE_LIMITED
    if status in (408, 504):
        return ErrorCode.API_TIMEOUT
    if 400 <= status < 500:
        return ErrorCode.HTTP_CLIENT_ERROR
    if status >= 500:
        return ErrorCode.HTTP_SERVER_ERROR
    return ErrorCode.HTTP_ERROR


def is_retryable(error: BaseException) -> bool:
    """Whether a failed upstream call is worth retrying."""
    return isinstance(error, ProviderServiceError) and error.code in (
        ErrorCode.API_TIMEOUT,
        ErrorCode.API_RATE_LIMITED,
        ErrorCode.HTTP_SERVER_ERROR,
    )
