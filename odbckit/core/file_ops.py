# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/core/file_ops.py
"""
File operation helpers for staging.

atomic_write() is used for artifacts we produce from scratch (zip archives,
tarballs, manifests). It is NOT used for odbcinst.ini: a temp-file rename
would reset the ownership and mode bits of a system file.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional


@contextmanager
def atomic_write(
    target_path: Path,
    *,
    suffix: str = ".part",
    dir: Optional[Path] = None,
) -> Generator[Path, None, None]:
    """
    Context manager for atomic file writes using temporary file + rename.

    Yields a temporary path next to the target; on success it is renamed over
    `target_path`, on failure it is removed and the exception re-raised.

    Example:
        with atomic_write(Path("/out/psqlodbc_x64.zip")) as tmp:
            with zipfile.ZipFile(tmp, "w") as zf:
                ...
    """
    target_path = Path(target_path)
    temp_dir = Path(dir) if dir else target_path.parent
    temp_dir.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        suffix=suffix,
        prefix=f".{target_path.name}.",
        dir=str(temp_dir),
    )
    temp_path = Path(temp_name)

    try:
        os.close(fd)
        yield temp_path
        os.replace(temp_path, target_path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def replace_symlink(target: str, link: Path) -> None:
    """Point `link` at `target`, removing whatever was at `link` first."""
    link = Path(link)
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(target)


def copy_tree_contents(src_dir: Path, dst_dir: Path) -> int:
    """
    Copy every entry of src_dir into dst_dir (like `cp -r src/* dst/`).
    Returns the number of top-level entries copied.
    """
    src_dir, dst_dir = Path(src_dir), Path(dst_dir)
    dst_dir.mkdir(parents=True, exist_ok=True)
    n = 0
    for entry in sorted(src_dir.iterdir()):
        dest = dst_dir / entry.name
        if entry.is_dir() and not entry.is_symlink():
            shutil.copytree(entry, dest, symlinks=True, dirs_exist_ok=True)
        else:
            if entry.is_symlink() and (dest.is_symlink() or dest.exists()):
                dest.unlink()
            shutil.copy2(entry, dest, follow_symlinks=False)
        n += 1
    return n
