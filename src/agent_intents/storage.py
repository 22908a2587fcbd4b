"""Owner-only permissions for the local SQLite database."""

from __future__ import annotations

import os
from pathlib import Path

DIR_MODE = 0o700
FILE_MODE = 0o600

# Files SQLite creates beside the database in WAL or rollback-journal mode.
SQLITE_SIDECAR_SUFFIXES = ("-wal", "-shm", "-journal")


def private_db_path(path: Path) -> Path:
    """Resolve a database path, creating its directory and file owner-only."""
    resolved = path.expanduser().resolve()
    resolved.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    os.chmod(resolved.parent, DIR_MODE)
    fd = os.open(resolved, os.O_CREAT | os.O_RDWR, FILE_MODE)
    os.close(fd)
    os.chmod(resolved, FILE_MODE)
    return resolved


def restrict_sidecars(db_path: Path) -> None:
    for suffix in SQLITE_SIDECAR_SUFFIXES:
        sidecar = db_path.with_name(db_path.name + suffix)
        if sidecar.exists():
            os.chmod(sidecar, FILE_MODE)
