# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/build/linux.py
"""
Linux psqlODBC driver preparation.

mimalloc pipeline (default): everything is extracted and compiled inside a
sandbox (<sandbox>/src for archives, <sandbox>/local as install prefix) and
only the results are copied into the TOOLBOX root.

standard pipeline: the PGDG driver RPM is unpacked straight into
build_version_dir and completed with system libraries.
"""

from __future__ import annotations

import datetime as _dt
import logging
import re
import shlex
import shutil
from pathlib import Path
from typing import Callable, List, Optional

from ..config.build_config import BuildConfig, LinuxConfig
from ..core.file_ops import copy_tree_contents, replace_symlink
from ..core.logger import Log
from ..core.utils import U
from . import staging
from .download import fetch
from .steps import StepRunner

PGDG_REPO_RPM = "https://download.postgresql.org/pub/repos/yum/reporpms/EL-8-x86_64/pgdg-redhat-repo-latest.noarch.rpm"
LIBTOOL_URL = "https://ftp.gnu.org/gnu/libtool/libtool-{ver}.tar.gz"
MIMALLOC_URL = "https://github.com/microsoft/mimalloc/archive/refs/tags/{tag}.tar.gz"
PSQLODBC_URL = "https://github.com/postgresql-interfaces/psqlodbc/archive/refs/tags/{ver}.tar.gz"

RPM_MARKER = ".rpm_extracted"

Fetcher = Callable[..., Path]


class LinuxDriverBuilder:
    def __init__(
        self,
        build: BuildConfig,
        cfg: LinuxConfig,
        runner: StepRunner,
        logger: logging.Logger,
        *,
        mimalloc: bool = True,
        fetcher: Fetcher = fetch,
        sysroot: Path = Path("/"),
    ):
        self.build_cfg = build
        self.cfg = cfg
        self.runner = runner
        self.logger = logger
        self.mimalloc = mimalloc
        self.fetcher = fetcher
        self.sysroot = Path(sysroot)

    # ------------------------------------------------------------------
    # host paths (relative to sysroot so a fake tree can stand in)
    # ------------------------------------------------------------------

    def _sys(self, rel: str) -> Path:
        return self.sysroot / rel.lstrip("/")

    @property
    def pg_root(self) -> Path:
        return self._sys(f"usr/pgsql-{self.build_cfg.base_version}")

    # ------------------------------------------------------------------
    # shared steps
    # ------------------------------------------------------------------

    def install_system_packages(self) -> None:
        base = self.build_cfg.base_version
        for argv in (
            ["sudo", "yum", "install", "-y", PGDG_REPO_RPM],
            ["sudo", "dnf", "-qy", "module", "disable", "postgresql"],
            [
                "sudo", "yum", "install", "-y",
                f"postgresql{base}", f"postgresql{base}-server", f"postgresql{base}-devel",
                "--skip-broken",
            ],
        ):
            self.runner.run("system_packages", argv)

    def _download(self, step: str, url: str, dest: Path) -> Path:
        path = self.runner.guard(step, f"Download {url}", lambda: self.fetcher(url, dest, logger=self.logger))
        return Path(path) if path is not None else dest

    def _unpack_rpm(self, into: Path) -> None:
        rpm = self.cfg.driver_rpm
        self._download("rpm_download", self.cfg.driver_url, rpm)
        cmd = f"rpm2cpio {shlex.quote(str(rpm))} | cpio -idmv"
        self.runner.shell("rpm_extract", cmd, cwd=into)

    def _delete_rpm(self) -> None:
        rpm = self.cfg.driver_rpm
        self.runner.guard("rpm_cleanup", f"Delete {rpm}", lambda: rpm.unlink())

    def copy_openssl(self, dest: Path) -> None:
        Log.step(self.logger, "Copying OpenSSL libraries (libssl, libcrypto)")
        dirs = [self._sys(str(d)) for d in staging.OPENSSL_DIRS]
        found = self.runner.guard(
            "openssl_copy",
            "Copy OpenSSL libraries",
            lambda: staging.copy_symlinked_libs(staging.OPENSSL_LIBS, dirs, dest),
        )
        for name, src in (found or {}).items():
            if src is None:
                self.runner.warn("openssl_copy", f"{name} NOT FOUND in any standard directory")
            else:
                self.logger.info("Copied %s via %s", name, src)

    def stage_register_script(
        self,
        target_root: Path,
        rules_for: Callable[[str], List[staging.LineRule]],
        *,
        required: bool,
    ) -> Optional[Path]:
        """
        Copy the registration script of the newest `N.N` directory under
        src_base_dir into target_root and patch it with rules_for(that_version).
        """
        step = "register_script"
        base = self.cfg.src_base_dir
        latest = self.runner.guard(step, f"Scan {base}", lambda: staging.latest_version_dir(base))
        if latest is None:
            msg = f"No version directories found under {base}"
            if required:
                self.runner.fail(step, msg)
            self.runner.warn(step, msg)
            return None

        source = base / latest / self.cfg.register_script
        target = target_root / self.cfg.register_script
        if not source.exists():
            msg = f"{self.cfg.register_script} not found at {source}"
            if required:
                self.runner.fail(step, msg)
            self.runner.warn(step, msg)
            return None

        def _copy_and_patch() -> int:
            target_root.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            return staging.patch_file(target, rules_for(latest))

        changed = self.runner.guard(step, f"Stage {source.name}", _copy_and_patch)
        if changed is None:
            return None
        Log.ok(self.logger, f"Copied and updated {target.name} from version {latest}", lines=changed)
        return target

    # ------------------------------------------------------------------
    # mimalloc pipeline
    # ------------------------------------------------------------------

    def _prepare_sandbox(self) -> None:
        c = self.cfg
        dirs = (
            c.sandbox_root, c.src_workdir, c.local_prefix, c.local_prefix / "lib", c.local_prefix / "lib64",
            c.toolbox_root, c.toolbox_lib, c.toolbox_inc,
        )
        self.runner.guard("prepare_dirs", "Create sandbox and TOOLBOX directories", lambda: [U.ensure_dir(d) for d in dirs])

    def extract_driver_rpm(self) -> None:
        c = self.cfg
        marker = c.sandbox_root / RPM_MARKER
        if marker.exists():
            self.logger.info("RPM already extracted (%s)", marker)
        else:
            self._unpack_rpm(c.sandbox_root)
            self.runner.guard(
                "rpm_marker",
                "Write rpm marker",
                lambda: marker.write_text(_dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S") + "\n", encoding="utf-8"),
            )
            self._delete_rpm()

        extracted = c.sandbox_root / "usr" / f"pgsql-{self.build_cfg.base_version}" / "lib"
        if not extracted.is_dir():
            self.runner.warn("rpm_libs", f"RPM lib dir {extracted} missing (ok if not provided in rpm)")
            return
        self.runner.guard(
            "rpm_libs",
            "Copy RPM libraries",
            lambda: staging.copy_matching([extracted], [re.compile(r"\.so")], c.local_prefix / "lib"),
        )
        self.runner.guard("rpm_cleanup", "Remove extracted usr tree", lambda: shutil.rmtree(c.sandbox_root / "usr"))

    def copy_system_libs(self) -> None:
        prefix_lib = self.cfg.local_prefix / "lib"
        names = staging.SYSTEM_ODBC_LIBS + ("libpq.so.5", staging.LIBPQ_REAL)
        self.runner.guard("system_libs", "Copy system ODBC libs", lambda: staging.copy_named(self._sys("usr/lib64"), names, prefix_lib))

    def copy_system_headers(self) -> None:
        inc = self.cfg.local_prefix / "include"
        self.runner.guard(
            "system_headers",
            "Copy unixODBC headers",
            lambda: staging.copy_named(self._sys("usr/include"), staging.UNIXODBC_HEADERS, inc),
        )
        self.runner.guard(
            "system_headers",
            "Copy unixodbc_conf.h",
            lambda: staging.copy_named(self._sys("usr/include/unixODBC"), ["unixodbc_conf.h"], inc),
        )

    def _make(self, step: str, cwd: Path) -> None:
        self.runner.run(step, [self.cfg.make, f"-j{self.cfg.nproc}"], cwd=cwd)
        self.runner.run(step, [self.cfg.make, "install"], cwd=cwd)

    def _untar(self, step: str, tgz: Path) -> None:
        self.runner.run(step, ["tar", "xzf", str(tgz), "-C", str(self.cfg.sandbox_root)])

    def _single_dir(self, step: str, pattern: str) -> Path:
        hits = sorted(p for p in self.cfg.sandbox_root.glob(pattern) if p.is_dir())
        if not hits:
            self.runner.fail(step, f"{pattern} not found under {self.cfg.sandbox_root}")
        return hits[0]

    def build_libtool(self) -> Path:
        c = self.cfg
        step = "libtool_build"
        Log.step(self.logger, f"Building libtool {c.libtool_ver} (libltdl)")
        tgz = self._download(step, LIBTOOL_URL.format(ver=c.libtool_ver), c.src_workdir / f"libtool-{c.libtool_ver}.tar.gz")
        self._untar(step, tgz)
        src = c.sandbox_root / f"libtool-{c.libtool_ver}"
        self.runner.run(step, ["./configure", f"--prefix={c.local_prefix}"], cwd=src)
        self._make(step, src)

        ltdl = staging.find_shared_lib(c.local_prefix, re.compile(r"^libltdl\.so"))
        if ltdl is None:
            self.runner.fail(step, f"libltdl not found under {c.local_prefix}")
        self.logger.info("Found libltdl: %s", ltdl)
        return ltdl  # type: ignore[return-value]

    def build_mimalloc(self) -> None:
        c = self.cfg
        step = "mimalloc_build"
        Log.step(self.logger, f"Building mimalloc {c.mim_tag}")
        tgz = self._download(step, MIMALLOC_URL.format(tag=c.mim_tag), c.src_workdir / f"mimalloc-{c.mim_tag}.tar.gz")
        self._untar(step, tgz)
        build_dir = self._single_dir(step, "mimalloc-*") / "build"
        self.runner.guard(step, f"Create {build_dir}", lambda: U.ensure_dir(build_dir))
        self.runner.run(
            step,
            ["cmake", "..", f"-DCMAKE_INSTALL_PREFIX={c.local_prefix}", "-DCMAKE_BUILD_TYPE=Release"],
            cwd=build_dir,
        )
        self._make(step, build_dir)

    def mimalloc_include_dir(self) -> Path:
        inc = self.cfg.local_prefix / "include"
        tag = self.cfg.mim_tag
        short = ".".join(tag.lstrip("v").split(".")[:2])
        for name in (f"mimalloc-{tag}", f"mimalloc-{short}"):
            if (inc / name).is_dir():
                return inc / name
        return inc

    def build_psqlodbc(self) -> None:
        c = self.cfg
        step = "psqlodbc_build"
        Log.step(self.logger, f"Building psqlODBC {c.psql_ver}")
        tgz = self._download(step, PSQLODBC_URL.format(ver=c.psql_ver), c.src_workdir / f"psqlodbc-{c.psql_ver}.tar.gz")
        self._untar(step, tgz)
        src = self._single_dir(step, "psqlodbc-*")
        if not (src / "configure").exists():
            self.runner.run(step, ["autoreconf", "-fi"], cwd=src)

        build_dir = src / "build"

        def _fresh_build_dir() -> None:
            if build_dir.is_dir():
                shutil.rmtree(build_dir)
            build_dir.mkdir()

        self.runner.guard(step, f"Recreate {build_dir}", _fresh_build_dir)

        p = c.local_prefix
        ldflags = f"-L{p}/lib -L{p}/lib64 -lmimalloc -lltdl -lpq"
        cppflags = f"-I{p}/include -I{self.mimalloc_include_dir()} -I{self.pg_root}/include"
        self.runner.run(
            step,
            ["../configure", "--with-mimalloc", f"LDFLAGS={ldflags}", f"CPPFLAGS={cppflags}", f"--prefix={p}"],
            cwd=build_dir,
        )
        self._make(step, build_dir)

    def stage_libs(self) -> None:
        c = self.cfg
        copied = self.runner.guard(
            "lib_copy",
            "Copy shared libs to TOOLBOX",
            lambda: staging.copy_matching([c.local_prefix / "lib", c.local_prefix / "lib64"], staging.WANTED_LIB_PATTERNS, c.toolbox_lib),
        )
        self.logger.info("Staged %d shared libraries into %s", len(copied or []), c.toolbox_lib)

    def ensure_symlinks(self) -> None:
        lib = self.cfg.toolbox_lib
        self.runner.guard("symlinks", "libpsqlodbc.so symlink", lambda: staging.ensure_psqlodbc_link(lib))
        ok = self.runner.guard("symlinks", "libpq symlink chain", lambda: staging.normalize_libpq_chain(lib))
        if ok is False:
            self.runner.warn("symlinks", "libpq actual file not found")

    def stage_headers(self) -> None:
        c = self.cfg
        for src in (c.local_prefix / "include", self.pg_root / "include"):
            if not src.is_dir():
                self.runner.warn("header_copy", f"{src} missing, headers not copied")
                continue
            self.runner.guard("header_copy", f"Copy headers from {src}", lambda s=src: copy_tree_contents(s, c.toolbox_inc))

    def _mimalloc_script_rules(self, latest: str) -> List[staging.LineRule]:
        return [staging.LineRule.of(r"^\s*my\s+\$driver_level\s*=\s*[\d\.'\"]+\s*;", f"my $driver_level = {latest};")]

    def package(self) -> Optional[Path]:
        c = self.cfg
        Log.step(self.logger, "Creating manifest and tarball")
        tar_path = c.sandbox_root / f"psqlodbc-{c.psql_ver}-{U.now_ts()}.tar.gz"

        def _pack() -> Path:
            staging.write_manifest(c.toolbox_root, c.psql_ver, c.toolbox_lib)
            return staging.make_tarball(c.toolbox_root, tar_path)

        out = self.runner.guard("package_tarball", f"Create {tar_path.name}", _pack)
        if out is not None:
            Log.ok(self.logger, f"Created package: {out}")
        return out

    def build_mimalloc_driver(self) -> Path:
        c = self.cfg
        Log.banner(self.logger, "Preparing Linux driver WITH mimalloc")
        self._prepare_sandbox()
        self.install_system_packages()
        self.extract_driver_rpm()
        self.copy_system_libs()
        self.copy_system_headers()
        self.build_libtool()
        self.build_mimalloc()
        self.build_psqlodbc()
        self.copy_openssl(c.toolbox_lib)
        self.stage_libs()
        self.ensure_symlinks()
        self.stage_headers()

        self.stage_register_script(c.toolbox_root, self._mimalloc_script_rules, required=False)

        if c.package:
            self.package()

        Log.ok(self.logger, "Linux mimalloc driver build & copy complete.", toolbox=str(c.toolbox_root))
        return c.toolbox_root

    # ------------------------------------------------------------------
    # standard pipeline
    # ------------------------------------------------------------------

    def _standard_script_rules(self) -> List[staging.LineRule]:
        ver = self.build_cfg.linux_version
        return [
            staging.LineRule.of(r"^(\s*Description\s*=\s*).*$", rf"\g<1>ODBC version {ver}-mimalloc for PostgreSQL"),
            staging.LineRule.of(r"(psqlODBC/)[0-9.]+(/lib/psqlodbcw\.so)", rf"\g<1>{ver}\g<2>"),
        ]

    def build_standard_driver(self) -> Path:
        c = self.cfg
        root = c.build_version_dir
        lib = root / "lib"
        inc = root / "inc"
        Log.banner(self.logger, "Preparing Linux driver")
        self.runner.guard("prepare_dirs", f"Create {lib}", lambda: U.ensure_dir(lib))
        self.install_system_packages()

        self._unpack_rpm(root)
        self._delete_rpm()

        extracted = root / "usr" / f"pgsql-{self.build_cfg.base_version}" / "lib"
        if not extracted.is_dir():
            self.runner.fail("rpm_libs", f"Expected extracted directory {extracted} not found.")
        self.runner.guard("rpm_libs", "Copy RPM libraries", lambda: staging.copy_matching([extracted], [re.compile(r"\.so$")], lib))
        self.runner.guard("rpm_cleanup", "Remove extracted usr tree", lambda: shutil.rmtree(root / "usr"))

        self.copy_openssl(lib)

        _, missing = self.runner.guard(
            "system_libs", "Copy system ODBC libs", lambda: staging.copy_named(self._sys("usr/lib64"), staging.SYSTEM_ODBC_LIBS, lib)
        ) or ([], [])
        for m in missing:
            self.runner.warn("system_libs", f"Source file {m} does not exist")

        _, missing = self.runner.guard(
            "system_libs", "Copy libpq", lambda: staging.copy_named(self.pg_root / "lib", ("libpq.so.5", staging.LIBPQ_REAL), lib)
        ) or ([], [])
        for m in missing:
            self.runner.warn("system_libs", f"Source file {m} does not exist")

        psqlodbcw = lib / "psqlodbcw.so"
        if psqlodbcw.exists():
            self.runner.guard("lib_copy", "Copy psqlodbcw.so to libpsqlodbc.so", lambda: shutil.copy2(psqlodbcw, lib / "libpsqlodbc.so"))
        else:
            self.runner.warn("lib_copy", f"Source file {psqlodbcw} does not exist")

        if not (lib / "libpq.so").exists():
            self.runner.guard("symlinks", "libpq.so -> libpq.so.5", lambda: replace_symlink("libpq.so.5", lib / "libpq.so"))

        _, missing = self.runner.guard(
            "header_copy", "Copy unixODBC headers", lambda: staging.copy_named(self._sys("usr/include"), staging.UNIXODBC_HEADERS, inc)
        ) or ([], [])
        _, missing_conf = self.runner.guard(
            "header_copy",
            "Copy unixodbc_conf.h",
            lambda: staging.copy_named(self._sys("usr/include/unixODBC"), ["unixodbc_conf.h"], inc),
        ) or ([], [])
        for m in list(missing) + list(missing_conf):
            self.runner.warn("header_copy", f"Missing file: {m}")

        self.stage_register_script(root, lambda _latest: self._standard_script_rules(), required=True)

        Log.ok(self.logger, "Linux driver build and copy complete.", build_dir=str(root))
        return root

    def build(self) -> Path:
        if self.mimalloc:
            return self.build_mimalloc_driver()
        return self.build_standard_driver()
