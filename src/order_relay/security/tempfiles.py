"""
Private temporary files that live for the rest of the process.

Trust stores handed to the Kafka client must stay on disk for as long as the
connections exist, so they cannot use a with-block scoped temp file. They are
created with 0600 permissions, tracked by a TempFileArena and removed at
interpreter exit.

Usage:
    path = default_arena().write(data, prefix="kafka-truststore-", suffix=".p12")
    ...
    # deleted by atexit, or explicitly:
    default_arena().cleanup()
"""

import atexit
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import List, Optional

from order_relay.common.logging import log_with_context

logger = logging.getLogger(__name__)


class TempFileArena:
    """
    Owner of process-lifetime temp files.

    Attributes:
        dir: Directory for temp files (defaults to system temp)
    """

    def __init__(self, dir: Optional[str] = None):
        self.dir = dir
        self._paths: List[Path] = []
        self._lock = threading.Lock()

    def write(self, data: bytes, prefix: str = "order_relay_", suffix: str = "") -> Path:
        """
        Write bytes to a new randomly named private file and track it.

        Returns:
            Absolute path of the new file

        Raises:
            OSError: If the file cannot be created or written
        """
        fd, path_str = tempfile.mkstemp(suffix=suffix, prefix=prefix, dir=self.dir)
        path = Path(path_str).resolve()
        try:
            with os.fdopen(fd, "wb") as f:
                os.chmod(path, 0o600)
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError:
            path.unlink(missing_ok=True)
            raise

        with self._lock:
            self._paths.append(path)
        return path

    @property
    def paths(self) -> List[Path]:
        with self._lock:
            return list(self._paths)

    def cleanup(self) -> None:
        """Delete all tracked files. Best effort: failures are logged."""
        with self._lock:
            paths, self._paths = self._paths, []

        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Could not delete temp file",
                    keystore_path=str(path),
                    error_message=str(e),
                )

    def __enter__(self) -> "TempFileArena":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()


_default_arena: Optional[TempFileArena] = None
_default_lock = threading.Lock()


def default_arena() -> TempFileArena:
    """Process-wide arena, cleaned up at interpreter exit."""
    global _default_arena
    with _default_lock:
        if _default_arena is None:
            _default_arena = TempFileArena()
            atexit.register(_default_arena.cleanup)
        return _default_arena
