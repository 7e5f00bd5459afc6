# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/build/staging.py
"""
Filesystem helpers for assembling a TOOLBOX driver tree:

  <root>/lib   shared libraries (+ compatibility symlinks)
  <root>/inc   ODBC / libpq / mimalloc headers
  <root>/<register script>
"""

from __future__ import annotations

import datetime as _dt
import json
import os
import re
import shutil
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from ..core.file_ops import atomic_write, replace_symlink

_VERSION_DIR_RE = re.compile(r"^(\d+)\.(\d+)$")

WANTED_LIB_PATTERNS: Tuple[Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        r"^libmimalloc.*\.so",
        r"^libltdl.*\.so",
        r"^libodbc.*\.so",
        r"^libodbcinst.*\.so",
        r"^libpsqlodbc.*\.so",
        r"^psqlodbca.*\.so",
        r"^psqlodbcw.*\.so",
        r"^libpq.*\.so",
    )
)

UNIXODBC_HEADERS = (
    "autotest.h",
    "odbcinst.h",
    "odbcinstext.h",
    "sql.h",
    "sqlext.h",
    "sqltypes.h",
    "sqlucode.h",
    "uodbc_extras.h",
    "uodbc_stats.h",
)

SYSTEM_ODBC_LIBS = ("libodbc.so", "libodbc.so.2", "libodbc.so.2.0.0", "libodbcinst.so")
OPENSSL_LIBS = ("libssl.so.3", "libcrypto.so.3")
OPENSSL_DIRS = (Path("/lib64"), Path("/usr/lib64"), Path("/usr/local/lib64"))

LIBPQ_REAL = "libpq.so.5.17"


def find_shared_lib(prefix: Path, pattern: Pattern[str]) -> Optional[Path]:
    """First file under <prefix>/lib64 then <prefix>/lib whose name matches."""
    for d in (Path(prefix) / "lib64", Path(prefix) / "lib"):
        if not d.is_dir():
            continue
        for entry in sorted(d.iterdir()):
            if pattern.search(entry.name):
                return entry
    return None


def copy_matching(src_dirs: Iterable[Path], patterns: Sequence[Pattern[str]], dest_dir: Path) -> List[Path]:
    """Copy (dereferencing symlinks) every file matching any pattern."""
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    copied: List[Path] = []
    for d in src_dirs:
        d = Path(d)
        if not d.is_dir():
            continue
        for entry in sorted(d.iterdir()):
            if entry.is_dir() or not any(p.search(entry.name) for p in patterns):
                continue
            target = dest_dir / entry.name
            if target.is_symlink():
                target.unlink()
            shutil.copy2(entry, target)
            copied.append(target)
    return copied


def copy_named(src_dir: Path, names: Iterable[str], dest_dir: Path) -> Tuple[List[Path], List[Path]]:
    """Copy the listed files that exist. Returns (copied, missing_sources)."""
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    copied: List[Path] = []
    missing: List[Path] = []
    for name in names:
        src = Path(src_dir) / name
        if not src.exists():
            missing.append(src)
            continue
        target = dest_dir / name
        if target.is_symlink():
            target.unlink()
        shutil.copy2(src, target)
        copied.append(target)
    return copied, missing


def copy_symlinked_libs(
    names: Iterable[str],
    search_dirs: Iterable[Path],
    dest_dir: Path,
) -> Dict[str, Optional[Path]]:
    """
    For each soname link (libssl.so.3, ...) take the first search dir where
    it is a symlink, copy the file it points at and recreate the link in
    dest_dir. Maps each name to the source link used, or None.
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    found: Dict[str, Optional[Path]] = {}
    dirs = [Path(d) for d in search_dirs]
    for name in names:
        found[name] = None
        for d in dirs:
            link = d / name
            if not link.is_symlink():
                continue
            real = os.readlink(link)
            src_real = Path(real) if os.path.isabs(real) else d / real
            real_name = Path(real).name
            shutil.copy2(src_real, dest_dir / real_name)
            replace_symlink(real_name, dest_dir / name)
            found[name] = link
            break
    return found


def ensure_psqlodbc_link(lib_dir: Path) -> bool:
    """libpsqlodbc.so -> psqlodbcw.so unless something is already there."""
    link = Path(lib_dir) / "libpsqlodbc.so"
    if link.exists() or link.is_symlink():
        return False
    link.symlink_to("psqlodbcw.so")
    return True


def normalize_libpq_chain(lib_dir: Path, real_name: str = LIBPQ_REAL) -> bool:
    """
    Make libpq.so -> libpq.so.5 -> <real_name>, renaming the first real
    (non-symlink) libpq.so* file to <real_name>. False if there is none.
    """
    lib_dir = Path(lib_dir)
    candidates = sorted(p for p in lib_dir.glob("libpq.so*") if not p.is_symlink() and p.is_file())
    if not candidates:
        return False
    actual = candidates[0]
    if actual.name != real_name:
        actual.rename(lib_dir / real_name)
    replace_symlink(real_name, lib_dir / "libpq.so.5")
    replace_symlink("libpq.so.5", lib_dir / "libpq.so")
    return True


def latest_version_dir(base: Path) -> Optional[str]:
    """Highest `major.minor` directory name under base, compared numerically."""
    versions: List[Tuple[int, int, str]] = []
    for entry in Path(base).iterdir():
        m = _VERSION_DIR_RE.match(entry.name)
        if m and entry.is_dir():
            versions.append((int(m.group(1)), int(m.group(2)), entry.name))
    if not versions:
        return None
    return max(versions)[2]


@dataclass(frozen=True)
class LineRule:
    """A per-line regex substitution (re.sub semantics, first match per line)."""
    pattern: Pattern[str]
    replacement: str

    @classmethod
    def of(cls, pattern: str, replacement: str) -> "LineRule":
        return cls(re.compile(pattern), replacement)


def patch_lines(lines: Sequence[str], rules: Sequence[LineRule]) -> Tuple[List[str], int]:
    out: List[str] = []
    changed = 0
    for line in lines:
        new = line
        for rule in rules:
            new = rule.pattern.sub(rule.replacement, new, count=1)
        if new != line:
            changed += 1
        out.append(new)
    return out, changed


def patch_file(path: Path, rules: Sequence[LineRule]) -> int:
    """Apply rules to every line of path in place. Returns lines changed."""
    path = Path(path)
    with open(path, "r", encoding="utf-8", newline="") as f:
        lines = f.readlines()
    new_lines, changed = patch_lines(lines, rules)
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.writelines(new_lines)
    return changed


def write_manifest(package_dir: Path, package_version: str, lib_dir: Path) -> Path:
    libs = sorted(p.name for p in Path(lib_dir).iterdir() if ".so" in p.name) if Path(lib_dir).is_dir() else []
    manifest = {
        "package_version": package_version,
        "built_at": _dt.datetime.now().strftime("%Y%m%d-%H%M%S"),
        "libs": libs,
    }
    target = Path(package_dir) / "manifest.json"
    with atomic_write(target) as tmp:
        tmp.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    return target


def make_tarball(src_dir: Path, tar_path: Path) -> Path:
    """gzip tarball of src_dir's contents (paths relative to src_dir)."""
    src_dir = Path(src_dir)
    with atomic_write(Path(tar_path)) as tmp:
        with tarfile.open(tmp, "w:gz") as tf:
            for entry in sorted(src_dir.iterdir()):
                tf.add(entry, arcname=entry.name)
    return Path(tar_path)
