# SPDX-License-Identifier: LGPL-3.0-or-later
# odbckit/config/__init__.py
from .build_config import BuildConfig, LinuxConfig, WindowsConfig
from .config_loader import Config

__all__ = ["BuildConfig", "Config", "LinuxConfig", "WindowsConfig"]
