"""
Warm sandbox pool for funcbox.

Sandboxes are pooled per (language, memory) profile. Each profile keeps a
LIFO idle list, a busy map and a FIFO queue of pending acquires. All pool
state is mutated on the event loop between awaits, so acquire/release are
atomic with respect to each other without an explicit lock.
"""

import asyncio
import contextlib
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from ..core.config import PoolConfig
from ..core.exceptions import (
    PoolClosedError,
    ResourceExhaustedError,
    SandboxCreationError,
    UnsupportedLanguageError,
)
from ..models.function import FunctionSpec
from .docker_runtime import DockerRuntime, LaunchSpec, Mount, ResourceLimits, short_id

logger = logging.getLogger(__name__)

BUNDLE_MOUNT = "/bundles"
KEEPALIVE_COMMAND = ["tail", "-f", "/dev/null"]


class SandboxState(str, Enum):
    """Lifecycle state of a pooled sandbox."""

    IDLE = "idle"
    BUSY = "busy"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class PoolKey:
    """Pooling profile: sandboxes are only shared between identical profiles."""

    language: str
    memory: int

    @classmethod
    def for_function(cls, spec: FunctionSpec) -> "PoolKey":
        return cls(language=spec.language, memory=spec.memory)

    def __str__(self) -> str:
        return f"{self.language}-{self.memory}"


@dataclass(eq=False)
class SandboxHandle:
    """A running sandbox owned by exactly one profile pool."""

    id: str
    key: PoolKey
    container: Any
    state: SandboxState = SandboxState.IDLE
    created_at: float = 0.0
    last_used_at: float = 0.0

    @property
    def language(self) -> str:
        return self.key.language

    @property
    def memory(self) -> int:
        return self.key.memory


@dataclass
class _ProfilePool:
    idle: list[SandboxHandle] = field(default_factory=list)
    busy: dict[str, SandboxHandle] = field(default_factory=dict)
    waiters: deque = field(default_factory=deque)
    creating: int = 0


class SandboxPool:
    """
    Pools reusable sandboxes per profile.

    - acquire: queue behind pending waiters, else warm (pop idle), else cold
      (create while under max_size), else wait
    - release: hand to the oldest waiter, else keep idle up to min_size,
      else destroy
    - a background sweeper destroys sandboxes idle past idle_timeout
    """

    def __init__(
        self,
        runtime: DockerRuntime,
        images: dict[str, str],
        bundle_root: str | Path,
        config: PoolConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize sandbox pool

        Args:
            runtime: Runtime driver used to create and remove sandboxes
            images: Image per language
            bundle_root: Host bundle directory mounted into every sandbox
            config: Pool sizing and timing
            clock: Monotonic time source
        """
        self.runtime = runtime
        self.images = dict(images)
        self.bundle_root = str(bundle_root)
        self.config = config or PoolConfig()
        self.min_size = self.config.min_size
        self.max_size = self.config.max_size
        self.idle_timeout = self.config.idle_timeout
        self.sweep_interval = self.config.sweep_interval
        self.acquire_timeout = self.config.acquire_timeout
        self._clock = clock

        self._pools: dict[PoolKey, _ProfilePool] = {}
        self._sweeper: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    @property
    def bundle_mount(self) -> str:
        return BUNDLE_MOUNT

    def _pool(self, key: PoolKey) -> _ProfilePool:
        pool = self._pools.get(key)
        if pool is None:
            pool = self._pools[key] = _ProfilePool()
        return pool

    async def acquire(self, key: PoolKey) -> SandboxHandle:
        """
        Get a sandbox for a profile.

        Raises:
            ResourceExhaustedError: No sandbox freed up within acquire_timeout
            SandboxCreationError: A new sandbox could not be created
            PoolClosedError: The pool has been shut down
        """
        if self._closed:
            raise PoolClosedError(str(key))
        pool = self._pool(key)

        # queued waiters keep their place in line
        if self._has_waiters(pool) or not self._has_capacity(pool):
            return await self._wait(key, pool)

        if pool.idle:
            handle = pool.idle.pop()
            self._mark_busy(pool, handle)
            logger.debug(f"Warm acquire of {short_id(handle.container)} for {key}")
            return handle

        pool.creating += 1
        try:
            handle = await self._create(key)
        except BaseException:
            pool.creating -= 1
            self._backfill(key, pool)
            raise
        pool.creating -= 1
        if self._closed:
            await self.destroy(handle)
            raise PoolClosedError(str(key))
        self._mark_busy(pool, handle)
        logger.debug(f"Cold acquire of {short_id(handle.container)} for {key}")
        return handle

    def _has_waiters(self, pool: _ProfilePool) -> bool:
        return any(not waiter.done() for waiter in pool.waiters)

    def _has_capacity(self, pool: _ProfilePool) -> bool:
        return len(pool.busy) + pool.creating < self.max_size

    async def _wait(self, key: PoolKey, pool: _ProfilePool) -> SandboxHandle:
        logger.debug(f"Pool {key} saturated ({self.max_size} busy), waiting")
        waiter = asyncio.get_running_loop().create_future()
        pool.waiters.append(waiter)
        self._backfill(key, pool)
        try:
            return await asyncio.wait_for(waiter, timeout=self.acquire_timeout)
        except asyncio.TimeoutError:
            # a release may have landed in the same loop iteration as the timeout
            if waiter.done() and not waiter.cancelled():
                return waiter.result()
            raise ResourceExhaustedError(str(key), self.acquire_timeout, self.max_size)
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                await self.release(waiter.result())
            raise
        finally:
            with contextlib.suppress(ValueError):
                pool.waiters.remove(waiter)

    async def release(self, handle: SandboxHandle) -> None:
        """Return a busy sandbox to its pool."""
        pool = self._pools.get(handle.key)
        if pool is None or pool.busy.get(handle.id) is not handle:
            logger.warning(f"Ignoring release of sandbox {handle.id[:12]} not busy in {handle.key}")
            return

        handle.last_used_at = self._clock()

        if not self._closed and self._handoff(pool, handle):
            logger.debug(f"Handed sandbox {handle.id[:12]} to waiter on {handle.key}")
            return

        del pool.busy[handle.id]
        if not self._closed and len(pool.idle) < self.min_size:
            handle.state = SandboxState.IDLE
            pool.idle.append(handle)
            return

        await self.destroy(handle)

    def _handoff(self, pool: _ProfilePool, handle: SandboxHandle) -> bool:
        while pool.waiters:
            waiter = pool.waiters.popleft()
            if not waiter.done():
                waiter.set_result(handle)
                return True
        return False

    async def destroy(self, handle: SandboxHandle) -> None:
        """
        Stop and remove a sandbox, best effort.

        The handle is marked destroyed whatever the outcome; failures are
        logged and never raised.
        """
        if handle.state is SandboxState.DESTROYED:
            return

        was_busy = False
        pool = self._pools.get(handle.key)
        if pool is not None:
            was_busy = pool.busy.pop(handle.id, None) is not None
            if handle in pool.idle:
                pool.idle.remove(handle)
        handle.state = SandboxState.DESTROYED

        if was_busy and pool is not None:
            self._backfill(handle.key, pool)

        try:
            await self.runtime.stop(handle.container)
        except Exception as e:
            logger.warning(f"Error stopping sandbox {handle.id[:12]}: {e}")
        try:
            await self.runtime.remove(handle.container)
        except Exception as e:
            logger.warning(f"Error removing sandbox {handle.id[:12]}: {e}")

    def _backfill(self, key: PoolKey, pool: _ProfilePool) -> None:
        """Serve waiters from idle, or create a replacement, while a busy slot is free."""
        if self._closed:
            return
        while pool.idle and self._has_waiters(pool) and self._has_capacity(pool):
            handle = pool.idle.pop()
            self._mark_busy(pool, handle)
            self._handoff(pool, handle)
        if not self._has_waiters(pool) or not self._has_capacity(pool):
            return
        pool.creating += 1
        task = asyncio.get_running_loop().create_task(self._create_for_waiter(key, pool))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _create_for_waiter(self, key: PoolKey, pool: _ProfilePool) -> None:
        try:
            handle = await self._create(key)
        except Exception as e:
            logger.warning(f"Replacement sandbox for {key} failed: {e}")
            return
        finally:
            pool.creating -= 1
        self._mark_busy(pool, handle)
        await self.release(handle)

    async def sweep_idle(self) -> int:
        """Destroy sandboxes idle longer than idle_timeout; returns how many."""
        cutoff = self._clock() - self.idle_timeout
        expired: list[SandboxHandle] = []

        for pool in self._pools.values():
            keep = []
            for handle in pool.idle:
                (keep if handle.last_used_at > cutoff else expired).append(handle)
            pool.idle = keep

        if expired:
            logger.info(f"Evicting {len(expired)} idle sandbox(es)")
            await asyncio.gather(*(self.destroy(h) for h in expired))
        return len(expired)

    async def warmup(self, key: PoolKey, count: int = 1) -> list[SandboxHandle]:
        """
        Pre-create sandboxes into the idle list.

        The idle list never grows past min_size, so at most
        ``min_size - len(idle)`` sandboxes are created. A new sandbox goes
        to a queued waiter instead when a busy slot is free for it.
        """
        if self._closed:
            raise PoolClosedError(str(key))
        pool = self._pool(key)
        room = max(self.min_size - len(pool.idle), 0)
        if count > room:
            logger.warning(f"Warmup of {count} for {key} capped to {room} (min_size {self.min_size})")

        created = []
        for _ in range(min(count, room)):
            try:
                handle = await self._create(key)
            except Exception as e:
                logger.error(f"Error warming up sandbox for {key}: {e}")
                continue
            if self._closed or len(pool.idle) >= self.min_size:
                await self.destroy(handle)
                continue
            if self._has_waiters(pool) and self._has_capacity(pool):
                self._mark_busy(pool, handle)
                self._handoff(pool, handle)
                created.append(handle)
                continue
            handle.state = SandboxState.IDLE
            pool.idle.append(handle)
            created.append(handle)

        logger.info(f"Warmed {len(created)} sandbox(es) for {key}")
        return created

    async def start(self) -> None:
        """Start the periodic idle sweeper."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
            logger.info(
                f"Sandbox pool started (min {self.min_size}, max {self.max_size}, "
                f"idle timeout {self.idle_timeout:g}s)"
            )

    async def shutdown(self) -> None:
        """Stop sweeping, fail pending acquires and destroy every sandbox."""
        self._closed = True

        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        for task in list(self._background):
            task.cancel()
        for task in list(self._background):
            with contextlib.suppress(asyncio.CancelledError):
                await task

        handles = []
        for key, pool in self._pools.items():
            while pool.waiters:
                waiter = pool.waiters.popleft()
                if not waiter.done():
                    waiter.set_exception(PoolClosedError(str(key)))
            handles.extend(pool.idle)
            handles.extend(pool.busy.values())

        await asyncio.gather(*(self.destroy(h) for h in handles))
        logger.info(f"Sandbox pool shut down, destroyed {len(handles)} sandbox(es)")

    def stats(self) -> dict[str, dict[str, int]]:
        return {
            str(key): {
                "idle": len(pool.idle),
                "busy": len(pool.busy),
                "creating": pool.creating,
                "waiting": sum(1 for w in pool.waiters if not w.done()),
            }
            for key, pool in self._pools.items()
        }

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep_idle()
            except Exception as e:
                logger.error(f"Idle sweep failed: {e}")

    async def _create(self, key: PoolKey) -> SandboxHandle:
        image = self.images.get(key.language)
        if image is None:
            raise UnsupportedLanguageError(key.language, sorted(self.images))

        container = await self.runtime.create_from_spec(
            LaunchSpec(
                image=image,
                command=list(KEEPALIVE_COMMAND),
                working_dir=BUNDLE_MOUNT,
                limits=ResourceLimits(memory_mb=key.memory),
                mounts=[Mount(self.bundle_root, BUNDLE_MOUNT, read_only=True)],
            )
        )
        try:
            await self.runtime.start(container)
        except Exception as e:
            with contextlib.suppress(Exception):
                await self.runtime.remove(container)
            raise SandboxCreationError(image, f"start failed: {e}", cause=e)

        now = self._clock()
        logger.info(f"Created pooled sandbox {short_id(container)} for {key}")
        return SandboxHandle(
            id=str(container.id), key=key, container=container, created_at=now, last_used_at=now
        )

    def _mark_busy(self, pool: _ProfilePool, handle: SandboxHandle) -> None:
        handle.state = SandboxState.BUSY
        handle.last_used_at = self._clock()
        pool.busy[handle.id] = handle
