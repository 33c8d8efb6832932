"""
Execution packager for funcbox.

Turns a FunctionSpec into a self-contained bundle directory under a
process-wide root: one subdirectory per execution id holding the user's
function, the entrypoint, the driver and a manifest.
"""

import contextlib
import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from ..core.config import PackagerConfig
from ..core.exceptions import PackagingError, UnsupportedLanguageError
from ..models.function import SUPPORTED_LANGUAGES, FunctionSpec
from .templates import TEMPLATES, LanguageTemplate

logger = logging.getLogger(__name__)


class BundlePackager:
    """
    Writes and deletes per-invocation bundles.

    Deleting a bundle is the caller's job; ``bundle()`` wraps generate and
    cleanup for callers that can use a with-block.
    """

    def __init__(self, bundle_root: str | Path | None = None):
        """
        Initialize packager

        Args:
            bundle_root: Directory holding bundles (default from PackagerConfig)
        """
        self.bundle_root = Path(bundle_root or PackagerConfig().bundle_root)
        self.bundle_root.mkdir(parents=True, exist_ok=True)

    def template_for(self, language: str) -> LanguageTemplate:
        template = TEMPLATES.get(language)
        if template is None:
            raise UnsupportedLanguageError(language, SUPPORTED_LANGUAGES)
        return template

    def generate(self, spec: FunctionSpec) -> Path:
        """
        Write a runnable bundle for one invocation.

        Args:
            spec: Function to package

        Returns:
            Path of the new bundle directory

        Raises:
            UnsupportedLanguageError: No template for spec.language
            PackagingError: The bundle could not be written
        """
        template = self.template_for(spec.language)
        execution_id = uuid.uuid4().hex
        bundle_path = self.bundle_root / execution_id

        try:
            # exist_ok=False: a reused id is an error, never a shared directory
            bundle_path.mkdir(mode=0o755)
        except OSError as e:
            raise PackagingError(spec.name, f"cannot create bundle directory: {e}", cause=e)

        try:
            self._write(bundle_path, template.function_file, template.render_function(spec.code))
            self._write(bundle_path, template.entrypoint_file, template.entrypoint_source)
            self._write(bundle_path, template.driver_file, template.driver_source)
            self._write(
                bundle_path,
                "manifest.json",
                json.dumps(self._manifest(spec, template, execution_id), indent=2),
            )
            if spec.language == "javascript":
                self._write(
                    bundle_path,
                    "package.json",
                    json.dumps(
                        {
                            "name": f"funcbox-function-{execution_id}",
                            "version": "1.0.0",
                            "private": True,
                            "main": template.entrypoint_file,
                            "dependencies": {},
                        },
                        indent=2,
                    ),
                )
        except OSError as e:
            self.cleanup(bundle_path)
            raise PackagingError(spec.name, str(e), cause=e)

        logger.debug(f"Generated {spec.language} bundle {execution_id} for '{spec.name}'")
        return bundle_path

    def cleanup(self, bundle_path: str | Path) -> bool:
        """
        Delete a bundle directory.

        Failures are logged and reported through the return value only.

        Returns:
            True if the directory is gone
        """
        path = Path(bundle_path)
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            logger.warning(f"Bundle {path.name} already removed")
            return True
        except OSError as e:
            logger.error(f"Failed to clean up bundle directory {path}: {e}")
            return False

        logger.debug(f"Removed bundle {path.name}")
        return True

    @contextlib.contextmanager
    def bundle(self, spec: FunctionSpec) -> Iterator[Path]:
        """Generate a bundle and delete it when the block exits."""
        bundle_path = self.generate(spec)
        try:
            yield bundle_path
        finally:
            self.cleanup(bundle_path)

    def _manifest(self, spec: FunctionSpec, template: LanguageTemplate, execution_id: str):
        return {
            "executionId": execution_id,
            "function": spec.name,
            "route": spec.route,
            "language": spec.language,
            "entrypoint": template.entrypoint_file,
            "driver": template.driver_file,
            "timeoutMs": spec.timeout,
            "memoryMb": spec.memory,
            "createdAt": datetime.now(timezone.utc).isoformat(),
        }

    @staticmethod
    def _write(bundle_path: Path, name: str, content: str) -> None:
        target = bundle_path / name
        target.write_text(content, encoding="utf-8")
        os.chmod(target, 0o644)
