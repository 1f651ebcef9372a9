"""Staging area for uploaded CSVs between submit and processing."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from rosterhub.core.config import settings
from rosterhub.core.errors import SourceUnavailable

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class LocalFileStorage:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def stage(self, import_id: str, kind: str, filename: str, content: bytes) -> str:
        safe_name = _UNSAFE.sub("_", Path(filename or "upload.csv").name) or "upload.csv"
        target = self.root / str(import_id) / f"{kind}_{safe_name}"
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return str(target.relative_to(self.root))

    def read(self, path: str) -> bytes:
        try:
            return (self.root / path).read_bytes()
        except OSError as e:
            raise SourceUnavailable(f"Staged file could not be read ({type(e).__name__})") from e

    def remove(self, paths: list[str]) -> None:
        """Best-effort; a leftover file never fails an import."""
        for path in paths:
            target = self.root / path
            try:
                target.unlink(missing_ok=True)
                if target.parent != self.root and not any(target.parent.iterdir()):
                    target.parent.rmdir()
            except OSError:
                logger.warning("Could not remove staged file %s", path, exc_info=True)


def get_storage() -> LocalFileStorage:
    return LocalFileStorage(settings.IMPORT_STAGING_DIR)
