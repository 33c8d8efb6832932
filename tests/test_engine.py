"""
Tests for FunctionEngine lifecycle and wiring
"""

import pytest

from funcbox.core.config import Config
from funcbox.core.exceptions import FuncboxError, format_error_for_user
from funcbox.engine import FunctionEngine


@pytest.fixture
def config(bundle_root):
    config = Config()
    config.packager.bundle_root = str(bundle_root)
    return config


class TestEngine:
    async def test_ephemeral_by_default(self, config, fake_runtime, python_spec, bundle_root):
        fake_runtime.output = b'{"statusCode": 200, "body": {"msg": "hi"}}'

        async with FunctionEngine(config, runtime=fake_runtime) as engine:
            assert engine.strategy == "ephemeral"
            assert engine.pool is None
            result = await engine.execute_function(python_spec, {})

        assert result.to_dict() == {"statusCode": 200, "body": {"msg": "hi"}}
        assert engine.stats() == {"strategy": "ephemeral", "pool": {}}
        assert list(bundle_root.iterdir()) == []

    async def test_pooled_lifecycle(self, config, fake_runtime, python_spec):
        config.executor.strategy = "pooled"
        config.pool.min_size = 1
        config.pool.max_size = 2
        config.pool.warmup = [
            {"language": "python", "memory": 128, "count": 3},
            {"language": "cobol"},
        ]
        fake_runtime.output = b'{"statusCode": 200, "body": null}'

        engine = FunctionEngine(config, runtime=fake_runtime)
        await engine.start()
        try:
            # warmup is capped at min_size, unknown languages skipped
            assert len(fake_runtime.created) == 1
            assert engine.stats()["pool"]["python-128"]["idle"] == 1

            result = await engine.execute_function(python_spec, {})

            assert result.status_code == 200
            assert len(fake_runtime.created) == 1
            assert len(fake_runtime.execs) == 1
        finally:
            await engine.shutdown()

        [container] = fake_runtime.created
        assert container in fake_runtime.removed
        assert engine.stats()["pool"]["python-128"] == {
            "idle": 0,
            "busy": 0,
            "creating": 0,
            "waiting": 0,
        }

    async def test_start_is_idempotent(self, config, fake_runtime):
        config.executor.strategy = "pooled"
        config.pool.warmup = [{"language": "python", "count": 1}]

        engine = FunctionEngine(config, runtime=fake_runtime)
        await engine.start()
        await engine.start()
        await engine.shutdown()

        assert len(fake_runtime.created) == 1

    async def test_never_raises(self, config, fake_runtime, python_spec):
        fake_runtime.create_error = RuntimeError("socket closed")

        async with FunctionEngine(config, runtime=fake_runtime) as engine:
            result = await engine.execute_function(python_spec, {})

        assert result.to_dict() == {"statusCode": 500, "body": {"error": "socket closed"}}


class TestErrorFormatting:
    def test_funcbox_error_message(self):
        error = FuncboxError("Pool saturated", error_code="X")

        assert format_error_for_user(error) == "Pool saturated"
        assert error.to_dict()["error_code"] == "X"

    def test_plain_exception(self):
        assert format_error_for_user(ValueError("bad")) == "bad"
        assert format_error_for_user(KeyError()) == "KeyError"
