"""
Tests for BundlePackager

Bundle layout, manifest contents, uniqueness and cleanup behaviour.
"""

import json
import stat
from unittest.mock import patch

import pytest

from funcbox.core.exceptions import PackagingError, UnsupportedLanguageError
from funcbox.sandbox.packager import BundlePackager


class TestGenerate:
    def test_python_bundle_layout(self, packager, python_spec, bundle_root):
        bundle = packager.generate(python_spec)

        assert bundle.parent == bundle_root
        assert sorted(p.name for p in bundle.iterdir()) == [
            "entrypoint.py",
            "execute.py",
            "function.py",
            "manifest.json",
        ]
        assert (bundle / "function.py").read_text() == python_spec.code
        mode = stat.S_IMODE((bundle / "execute.py").stat().st_mode)
        assert mode == 0o644

    def test_javascript_bundle_layout(self, packager, javascript_spec):
        bundle = packager.generate(javascript_spec)

        names = {p.name for p in bundle.iterdir()}
        assert names == {"function.js", "index.js", "execute.js", "manifest.json", "package.json"}
        assert (bundle / "function.js").read_text().startswith(javascript_spec.code)
        package = json.loads((bundle / "package.json").read_text())
        assert package["main"] == "index.js"

    def test_manifest(self, packager, python_spec):
        bundle = packager.generate(python_spec)

        manifest = json.loads((bundle / "manifest.json").read_text())

        assert manifest["executionId"] == bundle.name
        assert manifest["function"] == "greet"
        assert manifest["route"] == "/greet"
        assert manifest["language"] == "python"
        assert manifest["entrypoint"] == "entrypoint.py"
        assert manifest["driver"] == "execute.py"
        assert manifest["timeoutMs"] == 5000
        assert manifest["memoryMb"] == 128
        assert "createdAt" in manifest

    def test_each_call_gets_its_own_directory(self, packager, python_spec, bundle_root):
        bundles = {packager.generate(python_spec) for _ in range(5)}

        assert len(bundles) == 5
        assert len(list(bundle_root.iterdir())) == 5

    def test_unsupported_language(self, packager, python_spec, bundle_root):
        spec = python_spec.model_copy(update={"language": "ruby"})

        with pytest.raises(UnsupportedLanguageError):
            packager.generate(spec)

        assert list(bundle_root.iterdir()) == []

    def test_write_failure_removes_partial_bundle(self, packager, python_spec, bundle_root):
        with patch.object(BundlePackager, "_write", side_effect=OSError("No space left on device")):
            with pytest.raises(PackagingError) as exc_info:
                packager.generate(python_spec)

        assert "No space left on device" in str(exc_info.value)
        assert exc_info.value.function_name == "greet"
        assert list(bundle_root.iterdir()) == []

    def test_creates_missing_root(self, tmp_path):
        root = tmp_path / "nested" / "bundles"

        BundlePackager(root)

        assert root.is_dir()


class TestCleanup:
    def test_cleanup_removes_bundle(self, packager, python_spec):
        bundle = packager.generate(python_spec)

        assert packager.cleanup(bundle) is True
        assert not bundle.exists()

    def test_cleanup_missing_bundle(self, packager, bundle_root):
        assert packager.cleanup(bundle_root / "gone") is True

    def test_cleanup_failure_is_reported_not_raised(self, packager, python_spec):
        bundle = packager.generate(python_spec)

        with patch("funcbox.sandbox.packager.shutil.rmtree", side_effect=PermissionError("denied")):
            assert packager.cleanup(bundle) is False

    def test_bundle_context_cleans_up_on_error(self, packager, python_spec, bundle_root):
        with pytest.raises(RuntimeError):
            with packager.bundle(python_spec) as bundle:
                assert bundle.is_dir()
                raise RuntimeError("sandbox failed")

        assert list(bundle_root.iterdir()) == []
