"""Filesystem utilities for durable, all-or-nothing snapshot writes."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class FileTransaction:
    """Stage several file writes and make them visible together.

    Every write goes to a temporary file beside its target and is fsynced.
    Nothing replaces a target until :meth:`commit`, which renames the staged
    files into place and restores the previous contents if any rename fails.
    Leaving the ``with`` block without committing discards the staged files.
    """

    def __init__(self) -> None:
        self._staged: List[Tuple[Path, str]] = []
        self.committed = False

    def __enter__(self) -> "FileTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()

    @property
    def targets(self) -> List[Path]:
        return [target for target, _ in self._staged]

    def write_bytes(self, path: Path | str, data: bytes) -> None:
        """Stage ``data`` for ``path``."""

        if self.committed:
            raise RuntimeError("Transaction already committed")

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
        )
        try:
            with os.fdopen(fd, "wb") as tmp_file:
                tmp_file.write(data)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
        except BaseException:
            _remove_quietly(tmp_path)
            raise
        self._staged.append((target, tmp_path))

    def write_text(self, path: Path | str, text: str, encoding: str = "utf-8") -> None:
        """Stage ``text`` for ``path`` using UTF-8 by default."""

        self.write_bytes(path, text.encode(encoding))

    def commit(self) -> None:
        """Rename every staged file over its target."""

        if self.committed:
            raise RuntimeError("Transaction already committed")

        replaced: List[Tuple[Path, Optional[str]]] = []
        try:
            for target, tmp_path in self._staged:
                backup: Optional[str] = None
                if target.exists():
                    fd, backup = tempfile.mkstemp(
                        prefix=f".{target.name}.", suffix=".bak", dir=target.parent
                    )
                    os.close(fd)
                    try:
                        os.replace(target, backup)
                    except OSError:
                        _remove_quietly(backup)
                        raise
                replaced.append((target, backup))
                os.replace(tmp_path, target)
        except OSError:
            self._rollback(replaced)
            raise

        for _, backup in replaced:
            if backup is not None:
                _remove_quietly(backup)
        self._staged.clear()
        self.committed = True

    def discard(self) -> None:
        """Remove staged files that were never committed."""

        for _, tmp_path in self._staged:
            _remove_quietly(tmp_path)
        self._staged.clear()

    def _rollback(self, replaced: List[Tuple[Path, Optional[str]]]) -> None:
        for target, backup in reversed(replaced):
            try:
                if backup is not None:
                    os.replace(backup, target)
                elif target.exists():
                    target.unlink()
            except OSError:
                logger.exception("Failed to restore %s during rollback", target)


__all__ = ["FileTransaction"]
