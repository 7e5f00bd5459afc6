# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/registry/odbcinst.py
"""
Thin wrapper around the unixODBC `odbcinst` CLI.

Only three calls are used:
  odbcinst            -> presence probe (PATH lookup)
  odbcinst -j         -> where is the drivers file
  odbcinst -q -d -n N -> is driver section N known
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

from ..core.exceptions import Fatal, PrerequisiteError
from ..core.utils import U

LOG = logging.getLogger(__name__)

NOT_FOUND_MARKER = "SQLGetPrivateProfileString failed with"

# `odbcinst -j` prints "unixODBC 2.3.x\nDRIVERS............: /etc/odbcinst.ini\n..."
DRIVERS_TOKEN_INDEX = 3

REMEDIATION = (
    "Please install unixODBC driver manager version 2.3.1 or higher from: http://www.unixodbc.org/ \n"
    "and follow the instructions mentioned at: http://www.unixodbc.org/download.html \n"
    "and then, rerun this script.\n"
)


class OdbcInst:
    def __init__(self, logger: Optional[logging.Logger] = None, binary: str = "odbcinst"):
        self.logger = logger or LOG
        self.binary = binary

    def is_installed(self) -> bool:
        return U.which(self.binary) is not None

    def require(self) -> None:
        if not self.is_installed():
            raise PrerequisiteError(
                code=1,
                msg="unixODBC driver manager is not installed on this host.",
                remediation=REMEDIATION,
            )

    def locate_config(self) -> Path:
        cp = U.run_cmd(self.logger, [self.binary, "-j"], check=False, capture=True)
        tokens = (cp.stdout or "").split()
        if len(tokens) <= DRIVERS_TOKEN_INDEX:
            raise Fatal(1, f"Could not locate odbcinst.ini from '{self.binary} -j' output")
        path = Path(tokens[DRIVERS_TOKEN_INDEX])
        self.logger.debug("odbcinst drivers file: %s", path)
        return path

    def query_driver(self, name: str) -> str:
        """Combined stdout+stderr of `odbcinst -q -d -n name`; exit status is ignored."""
        cp = U.run_cmd(self.logger, [self.binary, "-q", "-d", "-n", name], check=False, capture=True)
        return (cp.stdout or "") + (cp.stderr or "")

    def exists(self, name: str) -> bool:
        """
        False only when odbcinst reports the not-found diagnostic.

        Any other outcome, including a failure to run the query at all,
        counts as present.
        """
        try:
            out = self.query_driver(name)
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.warning("odbcinst query for %s failed (%s); assuming the section exists", name, e)
            return True
        return NOT_FOUND_MARKER not in out
