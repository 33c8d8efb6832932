"""
Execution orchestrator for funcbox.

``FunctionExecutor.execute_function`` is the one operation the HTTP layer
calls. It packages the function, runs the driver in a sandbox, interprets
what the driver printed and always hands back an ExecutionResult; nothing
raised inside the pipeline reaches the caller.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any

from ..core.exceptions import (
    OutputParseError,
    UnsupportedLanguageError,
    format_error_for_user,
)
from ..models.function import ExecutionEvent, ExecutionResult, FunctionSpec
from .docker_runtime import DockerRuntime, Mount, ResourceLimits, short_id
from .packager import BundlePackager
from .pool import PoolKey, SandboxPool

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error occurred"


def parse_output(raw: str) -> Any:
    """Parse a sandbox's output as one JSON document."""
    try:
        return json.loads(raw)
    except ValueError as e:
        raise OutputParseError(raw, cause=e)


def interpret_output(exit_code: int, raw: str) -> ExecutionResult:
    """
    Turn a finished sandbox's exit status and output into a result.

    JSON output is returned as-is whatever the exit status, which is how the
    driver's own 408/500 documents surface. Non-JSON output is treated as
    opaque text: a trimmed error message on a non-zero exit, otherwise the
    untouched text as a 200 body.
    """
    text = raw.strip()
    try:
        return ExecutionResult.from_output(parse_output(text))
    except OutputParseError:
        if exit_code != 0:
            return ExecutionResult.error(text or UNKNOWN_ERROR)
        return ExecutionResult(status_code=200, body=raw)


class FunctionExecutor:
    """
    Runs function invocations in Docker sandboxes.

    Without a pool every call gets a fresh container (create, start, wait,
    logs, remove). With a pool, calls exec the driver inside a warm sandbox
    for the function's profile and hand it back afterwards.
    """

    def __init__(
        self,
        runtime: DockerRuntime,
        packager: BundlePackager,
        images: dict[str, str] | None = None,
        pool: SandboxPool | None = None,
        container_workdir: str | None = None,
    ):
        """
        Initialize executor

        Args:
            runtime: Sandbox runtime driver
            packager: Bundle packager
            images: Image per language (default from the runtime config)
            pool: Warm sandbox pool; switches the executor to pooled mode
            container_workdir: Bundle mount point for ephemeral sandboxes
        """
        self.runtime = runtime
        self.packager = packager
        self.images = dict(images or runtime.config.images)
        self.pool = pool
        self.container_workdir = container_workdir or runtime.config.container_workdir

        if pool is not None:
            if Path(pool.bundle_root).resolve() != Path(packager.bundle_root).resolve():
                raise ValueError(
                    f"Pool mounts {pool.bundle_root} but bundles are written to "
                    f"{packager.bundle_root}"
                )

    @property
    def strategy(self) -> str:
        return "ephemeral" if self.pool is None else "pooled"

    async def execute_function(
        self,
        spec: FunctionSpec | dict[str, Any],
        event: ExecutionEvent | dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """
        Execute a function with the given event.

        Args:
            spec: Function definition
            event: Invocation payload, passed to main(event) unchanged

        Returns:
            ExecutionResult; failures are reported as status 500 with
            ``{"error": message}`` as the body
        """
        started = time.perf_counter()
        name = spec.get("name", "<unknown>") if isinstance(spec, dict) else spec.name
        bundle_path = None

        try:
            if isinstance(spec, dict):
                spec = FunctionSpec.from_dict(spec)
            spec.ensure_runnable()
            template = self.packager.template_for(spec.language)
            image = self.images.get(spec.language)
            if image is None:
                raise UnsupportedLanguageError(spec.language, sorted(self.images))

            command = template.driver_command(self._serialize_event(event))
            bundle_path = await asyncio.to_thread(self.packager.generate, spec)

            if self.pool is None:
                exit_code, raw = await self._run_ephemeral(spec, image, command, bundle_path)
            else:
                exit_code, raw = await self._run_pooled(spec, command, bundle_path)

            result = interpret_output(exit_code, raw)

        except Exception as e:
            logger.error(f"Execution of function '{name}' failed: {e}")
            result = ExecutionResult.error(format_error_for_user(e))

        finally:
            if bundle_path is not None:
                await asyncio.to_thread(self.packager.cleanup, bundle_path)

        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            f"Function '{name}' executed in {duration_ms}ms "
            f"({self.strategy}) with status {result.http_status}"
        )
        return result

    async def _run_ephemeral(
        self, spec: FunctionSpec, image: str, command: list[str], bundle_path: Path
    ) -> tuple[int, str]:
        container = await self.runtime.create(
            image,
            command,
            self.container_workdir,
            ResourceLimits(memory_mb=spec.memory),
            [Mount(str(bundle_path), self.container_workdir, read_only=True)],
        )
        try:
            await self.runtime.start(container)
            exit_code = await self.runtime.wait(container)
            output = await self.runtime.logs(container)
        finally:
            try:
                await self.runtime.remove(container)
            except Exception as e:
                logger.warning(f"Failed to remove sandbox {short_id(container)}: {e}")

        return exit_code, output.decode("utf-8", errors="replace")

    async def _run_pooled(
        self, spec: FunctionSpec, command: list[str], bundle_path: Path
    ) -> tuple[int, str]:
        handle = await self.pool.acquire(PoolKey.for_function(spec))
        workdir = f"{self.pool.bundle_mount}/{bundle_path.name}"
        try:
            result = await self.runtime.exec(handle.container, command, workdir)
        except BaseException:
            # state inside the sandbox is unknown, never hand it out again
            await self.pool.destroy(handle)
            raise
        await self.pool.release(handle)

        return result.exit_code, result.output.decode("utf-8", errors="replace")

    @staticmethod
    def _serialize_event(event: ExecutionEvent | dict[str, Any] | None) -> str:
        if event is None:
            payload: Any = {}
        elif isinstance(event, ExecutionEvent):
            payload = event.to_dict()
        else:
            payload = event
        return json.dumps(payload)

