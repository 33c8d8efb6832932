"""
Custom exception hierarchy for funcbox error handling.

Every failure the execution engine can hit internally is expressed as a
FuncboxError subclass carrying context data, so the orchestrator can
translate it into a structured result and operators get actionable logs.
"""

from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field
import time


@dataclass
class ErrorContext:
    """Context information for errors."""

    component: str  # Component where error occurred
    operation: str  # Operation being performed
    data: Dict[str, Any]  # Relevant context data
    timestamp: float = field(default_factory=time.time)


class FuncboxError(Exception):
    """
    Base exception for all funcbox errors.

    All funcbox exceptions inherit from this class to provide
    consistent error handling and context.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        suggestions: Optional[List[str]] = None,
        cause: Optional[Exception] = None,
    ):
        """
        Initialize funcbox error.

        Args:
            message: Error message
            error_code: Unique error code for programmatic handling
            context: Error context information
            suggestions: Suggestions for resolution
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or ErrorContext(component="unknown", operation="unknown", data={})
        self.suggestions = suggestions or []
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": {
                "component": self.context.component,
                "operation": self.context.operation,
                "data": self.context.data,
                "timestamp": self.context.timestamp,
            },
            "suggestions": self.suggestions,
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        return self.message


class FunctionSpecError(FuncboxError):
    """Base class for problems with a function definition."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault(
            "context",
            ErrorContext(component="function_spec", operation="validate", data={}),
        )
        super().__init__(message, **kwargs)


class UnsupportedLanguageError(FunctionSpecError):
    """Raised when a function declares a language the engine cannot run."""

    def __init__(self, language: str, supported: Optional[List[str]] = None):
        supported = supported or []
        suggestions = []
        if supported:
            suggestions.append(f"Supported languages: {', '.join(supported)}")

        super().__init__(
            f"Unsupported language: {language}",
            error_code="UNSUPPORTED_LANGUAGE",
            context=ErrorContext(
                component="function_spec",
                operation="validate",
                data={"language": language, "supported": supported},
            ),
            suggestions=suggestions,
        )
        self.language = language


class InvalidFunctionSpecError(FunctionSpecError):
    """Raised when a function's limits fall outside the allowed bounds."""

    def __init__(self, field_name: str, value: Any, constraint: str):
        super().__init__(
            f"Invalid function {field_name}: {value} ({constraint})",
            error_code="INVALID_FUNCTION_SPEC",
            context=ErrorContext(
                component="function_spec",
                operation="validate",
                data={"field_name": field_name, "value": value, "constraint": constraint},
            ),
        )
        self.field_name = field_name
        self.value = value


class PackagingError(FuncboxError):
    """Raised when a runnable bundle cannot be written."""

    def __init__(self, function_name: str, error_details: Optional[str] = None, **kwargs):
        message = f"Failed to package function '{function_name}'"
        if error_details:
            message += f": {error_details}"

        kwargs.setdefault(
            "context",
            ErrorContext(
                component="packager",
                operation="generate",
                data={"function_name": function_name, "error_details": error_details},
            ),
        )
        kwargs.setdefault(
            "suggestions",
            ["Check that the bundle root exists and is writable", "Check free disk space"],
        )
        super().__init__(message, error_code="PACKAGING_FAILED", **kwargs)
        self.function_name = function_name


class SandboxError(FuncboxError):
    """Base class for sandbox lifecycle errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault(
            "context",
            ErrorContext(component="sandbox", operation="sandbox_operation", data={}),
        )
        super().__init__(message, **kwargs)


class SandboxCreationError(SandboxError):
    """Raised when a sandbox cannot be allocated."""

    def __init__(self, image: str, error_details: Optional[str] = None, cause=None):
        message = f"Failed to create sandbox from image '{image}'"
        if error_details:
            message += f": {error_details}"

        super().__init__(
            message,
            error_code="SANDBOX_CREATION_FAILED",
            context=ErrorContext(
                component="docker_runtime",
                operation="create",
                data={"image": image, "error_details": error_details},
            ),
            suggestions=[
                "Check that the Docker daemon is running",
                f"Pull the image with 'docker pull {image}'",
            ],
            cause=cause,
        )
        self.image = image


class SandboxRuntimeError(SandboxError):
    """Raised when a start/wait/logs/exec/stop/remove call fails."""

    def __init__(self, operation: str, container_id: str, error_details: Optional[str] = None,
                 cause=None):
        message = f"Sandbox {operation} failed for {container_id}"
        if error_details:
            message += f": {error_details}"

        super().__init__(
            message,
            error_code="SANDBOX_RUNTIME_FAILED",
            context=ErrorContext(
                component="docker_runtime",
                operation=operation,
                data={"container_id": container_id, "error_details": error_details},
            ),
            cause=cause,
        )
        self.operation = operation
        self.container_id = container_id


class ResourceExhaustedError(SandboxError):
    """Raised when no pooled sandbox becomes available in time."""

    def __init__(self, profile: str, timeout: float, max_size: int):
        super().__init__(
            f"Timeout waiting for available sandbox for profile '{profile}' "
            f"after {timeout:g}s (max {max_size} busy)",
            error_code="RESOURCE_EXHAUSTED",
            context=ErrorContext(
                component="sandbox_pool",
                operation="acquire",
                data={"profile": profile, "timeout": timeout, "max_size": max_size},
            ),
            suggestions=[
                "Increase the pool max_size for this profile",
                "Reduce invocation concurrency",
            ],
        )
        self.profile = profile
        self.timeout = timeout


class PoolClosedError(SandboxError):
    """Raised when a sandbox is requested from a pool that has shut down."""

    def __init__(self, profile: str):
        super().__init__(
            f"Sandbox pool is shut down (profile '{profile}')",
            error_code="POOL_CLOSED",
            context=ErrorContext(
                component="sandbox_pool", operation="acquire", data={"profile": profile}
            ),
        )
        self.profile = profile


class ExecutionError(FuncboxError):
    """Application-level error reported by the function itself (500, 408, ...)."""

    def __init__(self, status_code: int, body: Any):
        detail = body.get("error") if isinstance(body, dict) else body
        super().__init__(
            f"Function returned status {status_code}: {detail}",
            error_code="FUNCTION_TIMEOUT" if status_code == 408 else "FUNCTION_ERROR",
            context=ErrorContext(
                component="executor",
                operation="execute_function",
                data={"status_code": status_code},
            ),
        )
        self.status_code = status_code
        self.body = body


class OutputParseError(FuncboxError):
    """Raised when sandbox output is not a JSON document."""

    def __init__(self, output: str, cause=None):
        preview = output[:200]
        super().__init__(
            f"Sandbox output is not valid JSON: {preview!r}",
            error_code="OUTPUT_PARSE_FAILED",
            context=ErrorContext(
                component="executor", operation="parse_output", data={"length": len(output)}
            ),
            cause=cause,
        )
        self.output = output


class ConfigurationError(FuncboxError):
    """Base class for configuration-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault(
            "context",
            ErrorContext(component="config_manager", operation="config_operation", data={}),
        )
        super().__init__(message, **kwargs)


class ConfigFileError(ConfigurationError):
    """Raised for configuration file issues."""

    def __init__(self, file_path: str, operation: str, error_details: Optional[str] = None):
        message = f"Configuration file error during {operation}: {file_path}"
        if error_details:
            message += f": {error_details}"

        super().__init__(
            message,
            error_code="CONFIG_FILE_ERROR",
            context=ErrorContext(
                component="config_manager",
                operation=operation,
                data={"file_path": file_path, "error_details": error_details},
            ),
            suggestions=[
                "Verify file path and permissions",
                "Check file format (YAML/JSON)",
            ],
        )
        self.file_path = file_path
        self.operation = operation


class ConfigValidationError(ConfigurationError):
    """Raised for invalid configuration values."""

    def __init__(self, field_name: str, field_value: Any, validation_error: str):
        super().__init__(
            f"Invalid configuration value for '{field_name}': {field_value} - {validation_error}",
            error_code="CONFIG_VALIDATION_FAILED",
            context=ErrorContext(
                component="config_manager",
                operation="validate_config",
                data={
                    "field_name": field_name,
                    "field_value": str(field_value),
                    "validation_error": validation_error,
                },
            ),
            suggestions=["Check configuration documentation for valid values"],
        )
        self.field_name = field_name
        self.field_value = field_value


def format_error_for_user(error: Exception) -> str:
    """
    Convert an error into the message placed in a result body.

    Args:
        error: Exception instance

    Returns:
        Message text, never empty
    """
    if isinstance(error, FuncboxError):
        return error.message
    return str(error) or error.__class__.__name__
