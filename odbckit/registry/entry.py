# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/registry/entry.py

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional, Tuple

from ..core.exceptions import PrerequisiteError

DEFAULT_SECTION = "PostgreSQL_TC_x64"
DEFAULT_DRIVER_LEVEL = "17.06"
FOSS_ROOT_ENV = "FOSS_REPOSITORY_HOME"
DEFAULT_DRIVER_RELPATH = "artifacts/Teamcenter/lnx64/psqlODBC/{level}/lib/psqlodbcw.so"

FIELD_ORDER = ("Description", "Driver", "Driver64", "FileUsage")


@dataclass(frozen=True)
class DriverEntry:
    description: str
    driver: str
    driver64: str
    file_usage: str = "1"

    def fields(self) -> List[Tuple[str, str]]:
        values = (self.description, self.driver, self.driver64, self.file_usage)
        return list(zip(FIELD_ORDER, (str(v) for v in values)))

    @classmethod
    def for_library(
        cls,
        lib_path: str,
        *,
        driver_level: str = DEFAULT_DRIVER_LEVEL,
        description: Optional[str] = None,
    ) -> "DriverEntry":
        desc = description or f"ODBC version {driver_level} for PostgreSQL"
        return cls(description=desc, driver=str(lib_path), driver64=str(lib_path), file_usage="1")


def resolve_driver_path(
    *,
    override: Optional[str] = None,
    foss_root: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    driver_level: str = DEFAULT_DRIVER_LEVEL,
) -> str:
    """
    Resolution order:
      1. explicit driver library path
      2. installation root (argument, else environ[FOSS_REPOSITORY_HOME])
         joined with the default relative library path
      3. PrerequisiteError

    `environ` is passed in by the caller; nothing here reads os.environ.
    """
    if override:
        return str(override)

    root = foss_root or (environ or {}).get(FOSS_ROOT_ENV) or None
    if root:
        return os.path.join(str(root), DEFAULT_DRIVER_RELPATH.format(level=driver_level))

    raise PrerequisiteError(
        code=1,
        msg="The Teamcenter root FOSS directory cannot be found.",
        remediation=f"Pass --teamcenter_root_foss_directory, --driver_lib_path or set {FOSS_ROOT_ENV}.\n",
    )
