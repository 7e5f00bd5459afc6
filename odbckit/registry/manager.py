# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/registry/manager.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Union

from ..core.exceptions import wrap_io
from ..core.logger import Log
from . import ini
from .entry import DriverEntry
from .odbcinst import OdbcInst

LOG = logging.getLogger(__name__)

PathLike = Union[str, Path]

# newline="" keeps CRLF files intact; surrogateescape keeps undecodable bytes intact
_IO_KW = dict(encoding="utf-8", errors="surrogateescape", newline="")


def read_lines(path: PathLike) -> List[str]:
    try:
        with open(path, "r", **_IO_KW) as f:
            return f.readlines()
    except OSError as e:
        raise wrap_io(f"Could not open file '{path}'", e, path=str(path))


def write_lines(path: PathLike, lines: List[str]) -> None:
    try:
        with open(path, "w", **_IO_KW) as f:
            f.writelines(lines)
    except OSError as e:
        raise wrap_io(f"Could not open file '{path}'", e, path=str(path))


def has_section(path: PathLike, name: str) -> bool:
    """Parse-based presence check, no driver manager involved."""
    return bool(ini.find_sections(read_lines(path), name))


def remove_section(path: PathLike, name: str) -> int:
    """
    Rewrite `path` without any `[name]` section. Returns lines removed.
    The file is rewritten in place even when nothing matched.
    """
    kept, removed = ini.remove_sections(read_lines(path), name)
    write_lines(path, kept)
    return removed


def insert_section(path: PathLike, name: str, entry: DriverEntry) -> None:
    """
    Append `[name]` with the entry's fields. Never deduplicates.
    A missing file is created.
    """
    p = Path(path)
    existing = "".join(read_lines(p)) if p.exists() else ""
    text = ini.separator_for(existing) + "".join(ini.render_section(name, entry.fields()))
    try:
        with open(p, "a", **_IO_KW) as f:
            f.write(text)
    except OSError as e:
        raise wrap_io(f"Could not open file '{path}'", e, path=str(path))


class RegistryManager:
    """
    Keeps exactly one `[section]` stanza for our driver in odbcinst.ini.

    Presence is asked of the driver manager (odbcinst), the edits are done
    directly on the file. odbcinst only knows the drivers file it was built
    with, so when editing some other file pass `presence_from_file=True` and
    presence is read from that file instead.
    """

    def __init__(
        self,
        odbcinst: Optional[OdbcInst] = None,
        logger: Optional[logging.Logger] = None,
        *,
        presence_from_file: bool = False,
    ):
        self.logger = logger or LOG
        self.odbcinst = odbcinst or OdbcInst(self.logger)
        self.presence_from_file = presence_from_file

    def exists(self, path: PathLike, section: str) -> bool:
        if self.presence_from_file:
            present = Path(path).exists() and has_section(path, section)
            self.logger.debug("Section [%s] %s in %s", section, "present" if present else "absent", path)
            return present
        present = self.odbcinst.exists(section)
        self.logger.debug("Section [%s] %s according to odbcinst (%s)", section, "present" if present else "absent", path)
        return present

    def remove(self, path: PathLike, section: str) -> int:
        removed = remove_section(path, section)
        Log.step(self.logger, f"Removed existing entries of {section}", lines=removed, path=str(path))
        return removed

    def insert(self, path: PathLike, section: str, entry: DriverEntry) -> None:
        insert_section(path, section, entry)
        Log.step(self.logger, f"Inserted [{section}]", driver=entry.driver, path=str(path))

    def upsert(self, path: PathLike, section: str, entry: DriverEntry) -> bool:
        """
        absent  -> insert
        present -> remove all occurrences, then insert

        Returns True when an existing entry was replaced.
        """
        if not self.exists(path, section):
            self.insert(path, section, entry)
            return False

        self.logger.info("Removing the existing entries of %s...", section)
        self.remove(path, section)
        self.insert(path, section, entry)
        return True
