# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/config/build_config.py
"""
Typed view of the build configuration.

Example (YAML; the historic config.json has the same keys):

    base_version: "17"
    secondary_version: ".06"
    third_version: ".0006"
    linux:
      build_version_dir: /tc_work/nmb/TOOLBOX/lnx64/psqlODBC/17.06
      src_base_dir: /tc_work/nmb/TOOLBOX/lnx64/psqlODBC
      driver_rpm: /scratch/psqlodbc.rpm
      driver_url: https://download.postgresql.org/.../postgresql17-odbc.rpm
      mim_tag: v2.2.4
      psql_ver: REL-17_00_0006-mimalloc
    windows:
      windows_dir: /c/TOOLBOX/wntx64/psqlODBC/17.06
      windows_msi_url: https://ftp.postgresql.org/.../psqlodbc_x64.msi
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ..core.exceptions import Fatal

DEFAULT_MIM_TAG = "v2.2.4"
DEFAULT_PSQL_VER = "REL-17_00_0006-mimalloc"
DEFAULT_LIBTOOL_VER = "2.4.6"
DEFAULT_SANDBOX_ROOT = "/scratch/postgres_driver_build"
DEFAULT_TOOLBOX_ROOT = "/tc_work/nmb/TOOLBOX/lnx64/psqlODBC/17.00.0006-mimalloc"
DEFAULT_REGISTER_SCRIPT = "configure_postgresql_driver.pl"


def _req(section: Mapping[str, Any], key: str, where: str) -> str:
    v = section.get(key)
    if v is None or (isinstance(v, str) and not v.strip()):
        raise Fatal(2, f"{where}{key} missing")
    return str(v)


@dataclass(frozen=True)
class LinuxConfig:
    build_version_dir: Path
    src_base_dir: Path
    driver_rpm: Path
    driver_url: str
    nproc: int
    make: str
    mim_tag: str = DEFAULT_MIM_TAG
    psql_ver: str = DEFAULT_PSQL_VER
    libtool_ver: str = DEFAULT_LIBTOOL_VER
    sandbox_root: Path = Path(DEFAULT_SANDBOX_ROOT)
    toolbox_root: Path = Path(DEFAULT_TOOLBOX_ROOT)
    register_script: str = DEFAULT_REGISTER_SCRIPT
    package: bool = False

    @property
    def src_workdir(self) -> Path:
        return self.sandbox_root / "src"

    @property
    def local_prefix(self) -> Path:
        return self.sandbox_root / "local"

    @property
    def toolbox_lib(self) -> Path:
        return self.toolbox_root / "lib"

    @property
    def toolbox_inc(self) -> Path:
        return self.toolbox_root / "inc"

    @classmethod
    def from_dict(cls, d: Mapping[str, Any], *, environ: Optional[Mapping[str, str]] = None) -> "LinuxConfig":
        env = environ or {}
        return cls(
            build_version_dir=Path(_req(d, "build_version_dir", "linux.")),
            src_base_dir=Path(_req(d, "src_base_dir", "linux.")),
            driver_rpm=Path(_req(d, "driver_rpm", "linux.")),
            driver_url=_req(d, "driver_url", "linux."),
            nproc=int(d.get("nproc") or os.cpu_count() or 1),
            make=str(d.get("make") or env.get("MAKE") or "make"),
            mim_tag=str(d.get("mim_tag") or DEFAULT_MIM_TAG),
            psql_ver=str(d.get("psql_ver") or DEFAULT_PSQL_VER),
            libtool_ver=str(d.get("libtool_ver") or DEFAULT_LIBTOOL_VER),
            sandbox_root=Path(d.get("sandbox_root") or DEFAULT_SANDBOX_ROOT),
            toolbox_root=Path(d.get("toolbox_root") or DEFAULT_TOOLBOX_ROOT),
            register_script=str(d.get("register_script") or DEFAULT_REGISTER_SCRIPT),
            package=bool(d.get("package", False)),
        )


@dataclass(frozen=True)
class WindowsConfig:
    windows_dir: Path
    windows_msi_url: str
    temp_extract_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "psqlodbc_install")
    zip_name: str = "psqlodbc_x64.zip"

    @property
    def lib_dir(self) -> Path:
        return self.windows_dir / "lib"

    @property
    def msi_filename(self) -> str:
        return self.windows_msi_url.rstrip("/").rsplit("/", 1)[-1]

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "WindowsConfig":
        for key in ("windows_dir", "windows_msi_url"):
            if not d.get(key):
                raise Fatal(2, f"{key} is not defined in the build config")
        kw: Dict[str, Any] = {}
        if d.get("temp_extract_dir"):
            kw["temp_extract_dir"] = Path(d["temp_extract_dir"])
        if d.get("zip_name"):
            kw["zip_name"] = str(d["zip_name"])
        return cls(windows_dir=Path(d["windows_dir"]), windows_msi_url=str(d["windows_msi_url"]), **kw)


@dataclass(frozen=True)
class BuildConfig:
    base_version: str
    secondary_version: str = ""
    third_version: str = ""
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def win_version_path(self) -> str:
        return f"{self.base_version}{self.secondary_version}"

    @property
    def linux_version(self) -> str:
        return f"{self.base_version}{self.secondary_version}{self.third_version}"

    def linux(self, *, environ: Optional[Mapping[str, str]] = None) -> LinuxConfig:
        return LinuxConfig.from_dict(self.raw.get("linux") or {}, environ=environ)

    def windows(self) -> WindowsConfig:
        return WindowsConfig.from_dict(self.raw.get("windows") or {})

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BuildConfig":
        return cls(
            base_version=_req(d, "base_version", ""),
            secondary_version=str(d.get("secondary_version") or ""),
            third_version=str(d.get("third_version") or ""),
            raw=dict(d),
        )
