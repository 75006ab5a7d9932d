"""Filesystem helpers for dbcloner."""

import atexit
import logging
import os
import shutil
import sys
import tempfile
from typing import List

from rich.console import Console


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console
        self._staging_dirs: List[str] = []
        self._atexit_registered = False

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except Exception as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_dir(self, path: str, mode: int) -> str:
        os.makedirs(path, exist_ok=True)
        self.set_permissions(path, mode)
        return path

    def write_private_file(self, path: str, content: str, mode: int):
        """Writes ``content`` to ``path`` readable by the current user only."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC
        fd = os.open(path, flags, mode)
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
            file_obj.write(content)
        self.set_permissions(path, mode)

    def make_staging_dir(self, prefix: str) -> str:
        path = tempfile.mkdtemp(prefix=prefix)
        self._staging_dirs.append(path)
        if not self._atexit_registered:
            atexit.register(self.cleanup_staging_dirs)
            self._atexit_registered = True
        self.logger.debug("Created staging directory: %s", path)
        return path

    def release_staging_dir(self, path: str):
        self.cleanup_dir(path)
        if path in self._staging_dirs:
            self._staging_dirs.remove(path)

    def cleanup_staging_dirs(self):
        for path in list(self._staging_dirs):
            self.release_staging_dir(path)

    def cleanup_dir(self, path: str):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except Exception as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)
