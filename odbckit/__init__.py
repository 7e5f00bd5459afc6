# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/__init__.py
"""
odbckit - PostgreSQL ODBC driver preparation and registration

Usage as a library:

    from odbckit import DriverEntry, RegistryManager

    entry = DriverEntry.for_library("/opt/foss/.../psqlodbcw.so")
    RegistryManager().upsert("/etc/odbcinst.ini", "PostgreSQL_TC_x64", entry)
"""

__version__ = "0.1.0"

from .core import Fatal, Log, OdbcKitError
from .registry import DriverEntry, OdbcInst, RegistryManager, resolve_driver_path

__all__ = [
    "__version__",
    "DriverEntry",
    "Fatal",
    "Log",
    "OdbcInst",
    "OdbcKitError",
    "RegistryManager",
    "resolve_driver_path",
]
