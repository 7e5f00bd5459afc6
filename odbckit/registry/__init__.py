# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""odbcinst.ini driver entry management."""

from __future__ import annotations

from .entry import DEFAULT_DRIVER_LEVEL, DEFAULT_SECTION, DriverEntry, resolve_driver_path
from .manager import RegistryManager, has_section, insert_section, remove_section
from .odbcinst import OdbcInst

__all__ = [
    "DEFAULT_DRIVER_LEVEL",
    "DEFAULT_SECTION",
    "DriverEntry",
    "OdbcInst",
    "RegistryManager",
    "has_section",
    "insert_section",
    "remove_section",
    "resolve_driver_path",
]
