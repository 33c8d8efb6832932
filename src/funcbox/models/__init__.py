"""
funcbox data models package.

Exports the Pydantic models exchanged between the caller and the engine.
"""

from .function import (
    SUPPORTED_LANGUAGES,
    ExecutionEvent,
    ExecutionResult,
    FunctionSpec,
)

__all__ = [
    "SUPPORTED_LANGUAGES",
    "ExecutionEvent",
    "ExecutionResult",
    "FunctionSpec",
]
