# SPDX-License-Identifier: LGPL-3.0-or-later
# odbckit/core/__init__.py
from .exceptions import CommandError, DownloadError, Fatal, OdbcKitError, PrerequisiteError, RegistryIOError
from .logger import Log
from .utils import U

__all__ = ["CommandError", "DownloadError", "Fatal", "OdbcKitError", "PrerequisiteError", "RegistryIOError", "Log", "U"]
