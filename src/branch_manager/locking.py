"""Exclusive lock serializing mutating commands on one repository."""

from __future__ import annotations

import fcntl
import hashlib
import os
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from .errors import LockHeldError


def lock_path_for(locks_dir: Path, repo_root: Path) -> Path:
    """One lock file per repository, keyed by its resolved top-level path."""
    digest = hashlib.sha1(str(repo_root.resolve()).encode()).hexdigest()[:12]
    return locks_dir / f"{repo_root.name or 'repo'}-{digest}.lock"


def read_holder(lock_file: Path) -> str:
    try:
        return lock_file.read_text().strip()
    except OSError:
        return ""


@contextmanager
def operation_lock(lock_file: Path, operation: str) -> Iterator[Path]:
    """Hold ``lock_file`` exclusively for the duration of the context.

    Fails immediately with :class:`LockHeldError` if another process holds it.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    fh = open(lock_file, "a+")
    try:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            holder = read_holder(lock_file)
            raise LockHeldError(
                f"Another branch-manager command is running on this repository"
                f"{f' ({holder})' if holder else ''}. Lock file: {lock_file}"
            ) from e

        fh.seek(0)
        fh.truncate()
        fh.write(f"pid={os.getpid()} operation={operation} since={datetime.now():%H:%M:%S}\n")
        fh.flush()
        try:
            yield lock_file
        finally:
            fh.seek(0)
            fh.truncate()
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
    finally:
        fh.close()
