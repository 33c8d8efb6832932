"""
Docker runtime driver for funcbox sandboxes.

Thin async lifecycle wrapper (create/start/wait/logs/exec/stop/remove) over
docker-py containers. The SDK is blocking, so every call is pushed onto a
worker thread; callers on the event loop only suspend.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import docker
from docker.errors import APIError, DockerException, ImageNotFound
from docker.models.containers import Container

from ..core.config import RuntimeConfig
from ..core.exceptions import SandboxCreationError, SandboxRuntimeError

logger = logging.getLogger(__name__)

MANAGED_LABEL = "funcbox.managed"


@dataclass
class ResourceLimits:
    """Per-sandbox resource caps."""

    memory_mb: int
    cpu_period: int = 100000  # 100ms
    cpu_quota: int = 100000  # quota == period: one full core

    @property
    def memory_bytes(self) -> int:
        return self.memory_mb * 1024 * 1024

    def to_container_kwargs(self) -> dict[str, Any]:
        # memswap == mem disables swap
        return {
            "mem_limit": self.memory_bytes,
            "memswap_limit": self.memory_bytes,
            "cpu_period": self.cpu_period,
            "cpu_quota": self.cpu_quota,
        }


@dataclass
class Mount:
    """Host directory bind-mounted into a sandbox."""

    host_path: str
    container_path: str
    read_only: bool = True


@dataclass
class LaunchSpec:
    """Everything needed to create one sandbox."""

    image: str
    command: list[str]
    working_dir: str
    limits: ResourceLimits
    mounts: list[Mount] = field(default_factory=list)


@dataclass
class ExecOutput:
    """Result of a command run inside an already-running sandbox."""

    exit_code: int
    output: bytes


def short_id(container: Container) -> str:
    return str(getattr(container, "id", "unknown"))[:12]


class DockerRuntime:
    """
    Lifecycle wrapper over the Docker engine.

    All failures are re-raised as SandboxCreationError (create) or
    SandboxRuntimeError (everything else) wrapping the docker-py error.
    """

    def __init__(self, config: RuntimeConfig | None = None, client: Any = None):
        """
        Initialize runtime driver

        Args:
            config: Runtime configuration (security options, base URL)
            client: Pre-built docker client; created lazily when omitted
        """
        self.config = config or RuntimeConfig()
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if self.config.docker_base_url:
                self._client = docker.DockerClient(base_url=self.config.docker_base_url)
            else:
                self._client = docker.from_env()
        return self._client

    def _build_container_config(self, spec: LaunchSpec) -> dict[str, Any]:
        """Build docker-py create() keyword arguments."""
        container_config = {
            "working_dir": spec.working_dir,
            "volumes": {
                m.host_path: {"bind": m.container_path, "mode": "ro" if m.read_only else "rw"}
                for m in spec.mounts
            },
            "network_disabled": self.config.network_disabled,
            "pids_limit": self.config.pids_limit,
            "security_opt": list(self.config.security_opt),
            "cap_drop": list(self.config.cap_drop),
            "environment": {
                "PYTHONDONTWRITEBYTECODE": "1",
                "PYTHONUNBUFFERED": "1",
            },
            "labels": {MANAGED_LABEL: "true"},
        }
        container_config.update(spec.limits.to_container_kwargs())
        return container_config

    async def create(
        self,
        image: str,
        command: list[str],
        working_dir: str,
        limits: ResourceLimits,
        mounts: list[Mount] | None = None,
    ) -> Container:
        """Create (but do not start) a sandbox container."""
        return await self.create_from_spec(
            LaunchSpec(image, command, working_dir, limits, list(mounts or []))
        )

    async def create_from_spec(self, spec: LaunchSpec) -> Container:
        container_config = self._build_container_config(spec)
        try:
            container = await asyncio.to_thread(
                self.client.containers.create,
                image=spec.image,
                command=spec.command,
                **container_config,
            )
        except ImageNotFound as e:
            raise SandboxCreationError(spec.image, f"image not found: {e}", cause=e)
        except (APIError, DockerException) as e:
            raise SandboxCreationError(spec.image, str(e), cause=e)

        logger.debug(
            f"Created sandbox {short_id(container)} from {spec.image} "
            f"({spec.limits.memory_mb}MB)"
        )
        return container

    async def start(self, container: Container) -> None:
        await self._call("start", container, container.start)

    async def wait(self, container: Container) -> int:
        """Suspend until the sandbox process exits; returns its exit status."""
        result = await self._call("wait", container, container.wait)
        if isinstance(result, dict):
            return int(result.get("StatusCode", -1))
        return int(result)

    async def logs(self, container: Container) -> bytes:
        """Combined stdout+stderr, available whatever the exit status."""
        output = await self._call("logs", container, container.logs, stdout=True, stderr=True)
        return output or b""

    async def exec(self, container: Container, command: list[str], workdir: str) -> ExecOutput:
        """Run a command inside a running sandbox and collect its combined output."""
        result = await self._call(
            "exec",
            container,
            container.exec_run,
            cmd=command,
            workdir=workdir,
            stdout=True,
            stderr=True,
            demux=False,
        )
        exit_code = result.exit_code if result.exit_code is not None else -1
        return ExecOutput(exit_code=exit_code, output=result.output or b"")

    async def stop(self, container: Container) -> None:
        await self._call("stop", container, container.stop, timeout=self.config.stop_timeout)

    async def remove(self, container: Container) -> None:
        await self._call("remove", container, container.remove, force=True)
        logger.debug(f"Removed sandbox {short_id(container)}")

    async def _call(self, operation: str, container: Container, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (APIError, DockerException) as e:
            raise SandboxRuntimeError(operation, short_id(container), str(e), cause=e)
