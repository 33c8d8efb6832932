"""
funcbox - function-as-a-service execution engine.

Runs user functions (JavaScript or Python) in resource-limited Docker
sandboxes and returns a structured result for every invocation.
"""

__version__ = "0.1.0"

from .core.config import Config, ConfigManager, get_config
from .core.exceptions import FuncboxError
from .engine import FunctionEngine
from .models.function import ExecutionEvent, ExecutionResult, FunctionSpec
from .sandbox.manager import FunctionExecutor

__all__ = [
    "Config",
    "ConfigManager",
    "get_config",
    "FuncboxError",
    "FunctionEngine",
    "ExecutionEvent",
    "ExecutionResult",
    "FunctionSpec",
    "FunctionExecutor",
]
