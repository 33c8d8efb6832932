"""
Function data models for the execution engine.

Provides Pydantic models for stored function definitions, inbound
invocation events and the structured results handed back to callers.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.exceptions import (
    ExecutionError,
    InvalidFunctionSpecError,
    UnsupportedLanguageError,
)

SUPPORTED_LANGUAGES: List[str] = ["javascript", "python"]

TIMEOUT_MIN_MS = 1000
TIMEOUT_MAX_MS = 300000
MEMORY_MIN_MB = 64
MEMORY_MAX_MB = 1024

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_MEMORY_MB = 128


class FunctionSpec(BaseModel):
    """Stored function definition, read-only for the duration of one invocation."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., description="Human-readable function name")
    route: str = Field(..., description="Unique route the function is invoked under")
    language: str = Field(..., description="'javascript' or 'python'")
    code: str = Field(..., description="User source exposing a top-level main(event)")
    timeout: int = Field(
        DEFAULT_TIMEOUT_MS, ge=TIMEOUT_MIN_MS, le=TIMEOUT_MAX_MS, description="Milliseconds"
    )
    memory: int = Field(DEFAULT_MEMORY_MB, ge=MEMORY_MIN_MB, le=MEMORY_MAX_MB, description="MB")
    active: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FunctionSpec":
        """Build a spec from a persistence-layer document."""
        return cls.model_validate(data)

    def ensure_runnable(self) -> None:
        """
        Check the function can be executed as-is.

        Field constraints are only enforced at construction, so limits are
        re-checked here in case the owning layer mutated the object.

        Raises:
            UnsupportedLanguageError: language is not supported
            InvalidFunctionSpecError: timeout or memory out of bounds
        """
        if self.language not in SUPPORTED_LANGUAGES:
            raise UnsupportedLanguageError(self.language, SUPPORTED_LANGUAGES)
        if not TIMEOUT_MIN_MS <= self.timeout <= TIMEOUT_MAX_MS:
            raise InvalidFunctionSpecError(
                "timeout", self.timeout, f"must be within [{TIMEOUT_MIN_MS}, {TIMEOUT_MAX_MS}] ms"
            )
        if not MEMORY_MIN_MB <= self.memory <= MEMORY_MAX_MB:
            raise InvalidFunctionSpecError(
                "memory", self.memory, f"must be within [{MEMORY_MIN_MB}, {MEMORY_MAX_MB}] MB"
            )


class ExecutionEvent(BaseModel):
    """Inbound invocation payload, forwarded verbatim into the sandbox."""

    model_config = ConfigDict(extra="allow")

    body: Any = None
    headers: Dict[str, Any] = Field(default_factory=dict)
    path: str = "/"
    method: str = "POST"
    query: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionEvent":
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class ExecutionResult(BaseModel):
    """
    Closed invocation result: an optional status code plus a JSON body.

    An absent status code means the body is a raw payload to be served
    with status 200.
    """

    model_config = ConfigDict(populate_by_name=True)

    status_code: Optional[int] = Field(None, alias="statusCode")
    body: Any = None

    @classmethod
    def from_output(cls, value: Any) -> "ExecutionResult":
        """
        Interpret a parsed JSON document emitted by a sandbox.

        A mapping with an integer ``statusCode`` is taken as a structured
        response; every other JSON value is a raw body.
        """
        if isinstance(value, dict):
            status = value.get("statusCode")
            if isinstance(status, int) and not isinstance(status, bool):
                return cls(status_code=status, body=value.get("body"))
        return cls(status_code=None, body=value)

    @classmethod
    def error(cls, message: str, status_code: int = 500) -> "ExecutionResult":
        return cls(status_code=status_code, body={"error": message})

    @property
    def http_status(self) -> int:
        return 200 if self.status_code is None else self.status_code

    @property
    def is_error(self) -> bool:
        return self.http_status >= 400

    def raise_for_status(self) -> "ExecutionResult":
        """Raise ExecutionError when the function reported an error status."""
        if self.is_error:
            raise ExecutionError(self.http_status, self.body)
        return self

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"body": self.body}
        if self.status_code is not None:
            result = {"statusCode": self.status_code, "body": self.body}
        return result
