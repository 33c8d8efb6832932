"""
Shared fixtures for funcbox tests

In-memory stand-ins for the Docker runtime driver, plus a runtime that
runs bundle drivers as local processes so the language templates can be
exercised without a Docker daemon.
"""

import asyncio
import itertools
import os
import shutil
import sys
import uuid
from types import SimpleNamespace

import pytest

from funcbox.core.config import RuntimeConfig
from funcbox.models.function import FunctionSpec
from funcbox.sandbox.docker_runtime import ExecOutput, LaunchSpec
from funcbox.sandbox.packager import BundlePackager

IMAGES = {"javascript": "node:18-alpine", "python": "python:3.11-alpine"}

requires_node = pytest.mark.skipif(shutil.which("node") is None, reason="node not installed")


class FakeContainer:
    """Stand-in for a docker-py Container."""

    def __init__(self, container_id: str, spec: LaunchSpec):
        self.id = container_id
        self.spec = spec

    @property
    def bundle_host_path(self) -> str:
        return self.spec.mounts[0].host_path if self.spec.mounts else ""


class FakeRuntime:
    """Records every lifecycle call; outcomes are set on attributes."""

    def __init__(self):
        self.config = RuntimeConfig(images=dict(IMAGES))
        self._ids = itertools.count(1)

        self.exit_code = 0
        self.output = b""
        self.create_error = None
        self.wait_error = None
        self.exec_error = None
        self.stop_error = None
        self.remove_error = None

        self.created: list[FakeContainer] = []
        self.started: list[FakeContainer] = []
        self.removed: list[FakeContainer] = []
        self.stopped: list[FakeContainer] = []
        self.execs: list[tuple] = []
        self.bundles_seen: list[tuple] = []

    async def create(self, image, command, working_dir, limits, mounts=None):
        return await self.create_from_spec(
            LaunchSpec(image, command, working_dir, limits, list(mounts or []))
        )

    async def create_from_spec(self, spec):
        await asyncio.sleep(0)
        if self.create_error is not None:
            raise self.create_error
        container = FakeContainer(f"{next(self._ids):064x}", spec)
        self.created.append(container)
        return container

    async def start(self, container):
        self.started.append(container)

    async def wait(self, container):
        await asyncio.sleep(0)
        if self.wait_error is not None:
            raise self.wait_error
        path = container.bundle_host_path
        self.bundles_seen.append((path, os.path.isdir(path)))
        return self.exit_code

    async def logs(self, container):
        return self.output

    async def exec(self, container, command, workdir):
        await asyncio.sleep(0)
        if self.exec_error is not None:
            raise self.exec_error
        self.execs.append((container, list(command), workdir))
        return ExecOutput(exit_code=self.exit_code, output=self.output)

    async def stop(self, container):
        self.stopped.append(container)
        if self.stop_error is not None:
            raise self.stop_error

    async def remove(self, container):
        self.removed.append(container)
        if self.remove_error is not None:
            raise self.remove_error


class LocalProcessRuntime:
    """Runs the sandbox command as a host process inside the mounted bundle."""

    def __init__(self):
        self.config = RuntimeConfig(images=dict(IMAGES))
        self.removed = []

    async def create(self, image, command, working_dir, limits, mounts=None):
        host_dir = next(m.host_path for m in mounts or [] if m.container_path == working_dir)
        argv = list(command)
        if argv[0] == "python":
            argv[0] = sys.executable
        return SimpleNamespace(id=uuid.uuid4().hex, argv=argv, cwd=host_dir, proc=None, out=b"")

    async def start(self, container):
        container.proc = await asyncio.create_subprocess_exec(
            *container.argv,
            cwd=container.cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

    async def wait(self, container):
        container.out, _ = await container.proc.communicate()
        return container.proc.returncode

    async def logs(self, container):
        return container.out

    async def remove(self, container):
        self.removed.append(container.id)


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def local_runtime():
    return LocalProcessRuntime()


@pytest.fixture
def bundle_root(tmp_path):
    root = tmp_path / "bundles"
    root.mkdir()
    return root


@pytest.fixture
def packager(bundle_root):
    return BundlePackager(bundle_root)


@pytest.fixture
def python_spec():
    return FunctionSpec(
        name="greet",
        route="/greet",
        language="python",
        code='def main(event):\n    return {"statusCode": 200, "body": {"msg": "hi"}}\n',
        timeout=5000,
        memory=128,
    )


@pytest.fixture
def javascript_spec():
    return FunctionSpec(
        name="greet-js",
        route="/greet-js",
        language="javascript",
        code='const main = async (event) => ({statusCode:200, body:{msg:"hi"}});',
        timeout=5000,
        memory=128,
    )
