"""
funcbox sandbox package

Docker runtime driver, bundle packager, warm sandbox pool and the
execution orchestrator built on top of them.
"""

from .docker_runtime import DockerRuntime, ResourceLimits, Mount
from .packager import BundlePackager
from .pool import PoolKey, SandboxHandle, SandboxPool, SandboxState
from .manager import FunctionExecutor, interpret_output

__all__ = [
    "DockerRuntime",
    "ResourceLimits",
    "Mount",
    "BundlePackager",
    "PoolKey",
    "SandboxHandle",
    "SandboxPool",
    "SandboxState",
    "FunctionExecutor",
    "interpret_output",
]
