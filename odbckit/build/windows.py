# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/build/windows.py
"""
Windows psqlODBC driver preparation.

The MSI is unpacked with an administrative install (no registry changes),
its DLLs go to <windows_dir>/lib and the MSI itself is shipped inside
psqlodbc_x64.zip together with the upstream README.
"""

from __future__ import annotations

import logging
import re
import shutil
import zipfile
from pathlib import Path
from typing import Callable, List, Optional

from ..config.build_config import BuildConfig, WindowsConfig
from ..core.file_ops import atomic_write
from ..core.logger import Log
from ..core.utils import U
from .download import fetch
from .steps import StepRunner

README_NAME = "README.txt"

_DRIVE_RE = re.compile(r"^/([a-zA-Z])(/|$)")


def to_windows_path(path: str) -> str:
    """
    MSYS-style to Windows path for msiexec: /c/temp/x -> C:\\temp\\x.
    Anything else only gets its separators flipped.
    """
    m = _DRIVE_RE.match(path)
    if m:
        path = f"{m.group(1).upper()}:{path[2:]}"
    return path.replace("/", "\\")


class WindowsDriverPackager:
    def __init__(
        self,
        build: BuildConfig,
        cfg: WindowsConfig,
        runner: StepRunner,
        logger: logging.Logger,
        *,
        fetcher: Callable[..., Path] = fetch,
    ):
        self.build_cfg = build
        self.cfg = cfg
        self.runner = runner
        self.logger = logger
        self.fetcher = fetcher

    @property
    def msi_local(self) -> Path:
        return self.cfg.windows_dir / self.cfg.msi_filename

    @property
    def extracted_root(self) -> Path:
        return self.cfg.temp_extract_dir / "PFiles64" / "psqlODBC" / self.build_cfg.win_version_path

    @property
    def zip_path(self) -> Path:
        return self.cfg.windows_dir / self.cfg.zip_name

    def download_msi(self) -> Path:
        if self.msi_local.exists():
            self.logger.info("MSI file already exists: %s", self.msi_local)
            return self.msi_local
        self.runner.guard(
            "msi_download",
            f"Download {self.cfg.windows_msi_url}",
            lambda: self.fetcher(self.cfg.windows_msi_url, self.msi_local, logger=self.logger),
        )
        return self.msi_local

    def extract_msi(self) -> None:
        tmp = self.cfg.temp_extract_dir

        def _fresh_tmp() -> None:
            if tmp.is_dir():
                shutil.rmtree(tmp)
            tmp.mkdir(parents=True)

        self.runner.guard("msi_extract", f"Recreate {tmp}", _fresh_tmp)
        self.runner.run(
            "msi_extract",
            ["msiexec", "/a", to_windows_path(str(self.msi_local)), "/qn", f"TARGETDIR={to_windows_path(str(tmp))}"],
        )

    def copy_dlls(self) -> List[Path]:
        dll_dir = self.extracted_root / "bin"
        if not dll_dir.is_dir():
            self.runner.warn("dll_copy", f"DLL directory {dll_dir} does not exist, skipping DLL copy.")
            return []

        def _copy() -> List[Path]:
            out: List[Path] = []
            for entry in sorted(dll_dir.iterdir()):
                if entry.name.startswith(".") or entry.suffix.lower() != ".dll":
                    continue
                target = self.cfg.lib_dir / entry.name
                shutil.copy2(entry, target)
                out.append(target)
            return out

        copied = self.runner.guard("dll_copy", f"Copy DLLs from {dll_dir}", _copy) or []
        self.logger.info("Copied %d DLLs into %s", len(copied), self.cfg.lib_dir)
        return copied

    def copy_readme(self) -> Optional[Path]:
        readme = self.extracted_root / "docs" / README_NAME
        if not readme.exists():
            self.runner.warn("readme_copy", f"README file not found at {readme}")
            return None
        self.logger.info("Found README file at %s", readme)
        target = self.cfg.windows_dir / README_NAME
        self.runner.guard("readme_copy", "Copy README", lambda: shutil.copy2(readme, target))
        return target if target.exists() else None

    def create_zip(self, readme: Optional[Path]) -> Path:
        def _zip() -> Path:
            with atomic_write(self.zip_path) as tmp:
                with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                    zf.write(self.msi_local, arcname=self.cfg.msi_filename)
                    if readme is not None:
                        zf.write(readme, arcname=README_NAME)
            return self.zip_path

        if readme is None:
            self.runner.warn("zip_create", "README file not found for zipping")
        self.runner.guard("zip_create", f"Write {self.zip_path.name}", _zip)
        Log.ok(self.logger, f"Created ZIP archive {self.zip_path} containing MSI and README")
        return self.zip_path

    def cleanup(self) -> None:
        self.runner.guard("cleanup", "Remove temp extraction dir", lambda: shutil.rmtree(self.cfg.temp_extract_dir))
        self.runner.guard("cleanup", f"Delete MSI file {self.msi_local}", lambda: self.msi_local.unlink())
        readme = self.cfg.windows_dir / README_NAME
        self.runner.guard("cleanup", f"Delete README file {readme}", lambda: readme.unlink())

    def build(self) -> Path:
        Log.banner(self.logger, "Preparing Windows driver")
        self.runner.guard("dll_copy", f"Create {self.cfg.lib_dir}", lambda: U.ensure_dir(self.cfg.lib_dir))
        self.download_msi()
        self.extract_msi()
        self.copy_dlls()
        readme = self.copy_readme()
        zip_path = self.create_zip(readme)
        self.cleanup()
        Log.ok(self.logger, "The Windows driver build and copy complete.", lib=str(self.cfg.lib_dir))
        return zip_path
