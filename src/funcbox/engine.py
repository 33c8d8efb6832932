"""
Engine lifecycle for funcbox.

FunctionEngine owns the runtime driver, packager, optional sandbox pool and
orchestrator for one process: build it at startup, ``await start()``,
serve ``execute_function`` calls, ``await shutdown()`` on exit.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from .core.config import Config, get_config
from .models.function import DEFAULT_MEMORY_MB, ExecutionEvent, ExecutionResult, FunctionSpec
from .sandbox.docker_runtime import DockerRuntime
from .sandbox.manager import FunctionExecutor
from .sandbox.packager import BundlePackager
from .sandbox.pool import PoolKey, SandboxPool

logger = logging.getLogger(__name__)


class FunctionEngine:
    """Composes the execution pipeline from a Config."""

    def __init__(self, config: Optional[Config] = None, runtime: Optional[DockerRuntime] = None):
        """
        Initialize the engine

        Args:
            config: Engine configuration (defaults to the global config)
            runtime: Runtime driver to use instead of one built from config
        """
        self.config = config or get_config()
        self.runtime = runtime or DockerRuntime(self.config.runtime)
        self.packager = BundlePackager(self.config.packager.bundle_root)

        self.pool: Optional[SandboxPool] = None
        if self.config.executor.strategy == "pooled":
            self.pool = SandboxPool(
                self.runtime,
                self.config.runtime.images,
                self.packager.bundle_root,
                self.config.pool,
            )

        self.executor = FunctionExecutor(
            self.runtime,
            self.packager,
            images=self.config.runtime.images,
            pool=self.pool,
            container_workdir=self.config.runtime.container_workdir,
        )
        self._started = False

    @property
    def strategy(self) -> str:
        return self.executor.strategy

    async def start(self) -> None:
        """Start the pool sweeper and pre-provision configured profiles."""
        if self._started:
            return
        self._started = True

        if self.pool is not None:
            await self.pool.start()
            for key, count in self._warmup_plan():
                await self.pool.warmup(key, count)

        logger.info(
            f"Function engine started ({self.strategy}, bundles in {self.packager.bundle_root})"
        )

    async def shutdown(self) -> None:
        """Drain the pool, destroying every pooled sandbox."""
        if self.pool is not None:
            await self.pool.shutdown()
        self._started = False
        logger.info("Function engine shut down")

    async def execute_function(
        self,
        spec: Union[FunctionSpec, Dict[str, Any]],
        event: Union[ExecutionEvent, Dict[str, Any], None] = None,
    ) -> ExecutionResult:
        return await self.executor.execute_function(spec, event)

    def stats(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "pool": self.pool.stats() if self.pool is not None else {},
        }

    def _warmup_plan(self) -> List[tuple]:
        plan = []
        for entry in self.config.pool.warmup:
            language = entry["language"]
            if language not in self.config.runtime.images:
                logger.warning(f"Skipping warmup for unsupported language '{language}'")
                continue
            key = PoolKey(language=language, memory=int(entry.get("memory", DEFAULT_MEMORY_MB)))
            plan.append((key, int(entry.get("count", self.config.pool.min_size))))
        return plan

    async def __aenter__(self) -> "FunctionEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
