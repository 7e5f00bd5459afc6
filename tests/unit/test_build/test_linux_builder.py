# SPDX-License-Identifier: LGPL-3.0-or-later
"""End-to-end Linux pipelines against a fake sysroot; external commands are simulated."""
from __future__ import annotations

import os
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from fakes.fake_logger import FakeLogger
from odbckit.build.linux import RPM_MARKER, LinuxDriverBuilder
from odbckit.build.steps import StepRunner
from odbckit.config.build_config import BuildConfig, LinuxConfig
from odbckit.core.exceptions import Fatal

SCRIPT = "configure_postgresql_driver.pl"


def _touch(p: Path, data: str = "x") -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(data)
    return p


class FakeHost:
    """Records commands and leaves behind what the real tools would produce."""

    def __init__(self, local_prefix: Path):
        self.local_prefix = local_prefix
        self.calls = []
        self.fetched = []

    def fetch(self, url, dest, logger=None):
        self.fetched.append(url)
        return _touch(Path(dest), "archive")

    def run_cmd(self, logger, argv, **kw):
        cwd = Path(kw["cwd"]) if kw.get("cwd") else None
        self.calls.append((list(argv), cwd))
        if argv[:2] == ["/bin/sh", "-c"] and "rpm2cpio" in argv[2]:
            lib = cwd / "usr" / "pgsql-17" / "lib"
            for name in ("psqlodbcw.so", "psqlodbca.so", "libpq.so.5.17"):
                _touch(lib / name, name)
        elif argv[0] == "tar":
            tgz = Path(argv[2])
            (Path(argv[4]) / tgz.name[: -len(".tar.gz")]).mkdir(parents=True, exist_ok=True)
        elif argv[-1] == "install" and cwd is not None:
            parts = cwd.parts
            lib = self.local_prefix / "lib"
            if any(p.startswith("psqlodbc-") for p in parts):
                _touch(lib / "psqlodbcw.so", "built")
            elif any(p.startswith("mimalloc-") for p in parts):
                _touch(lib / "libmimalloc.so.2")
            elif any(p.startswith("libtool-") for p in parts):
                _touch(lib / "libltdl.so.7")
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")


@pytest.fixture
def sysroot(tmp_path):
    root = tmp_path / "sysroot"
    _touch(root / "usr" / "lib64" / "libssl.so.3.0.7")
    (root / "usr" / "lib64" / "libssl.so.3").symlink_to("libssl.so.3.0.7")
    _touch(root / "usr" / "lib64" / "libodbc.so.2")
    _touch(root / "usr" / "include" / "sql.h")
    _touch(root / "usr" / "include" / "unixODBC" / "unixodbc_conf.h")
    _touch(root / "usr" / "pgsql-17" / "lib" / "libpq.so.5")
    _touch(root / "usr" / "pgsql-17" / "lib" / "libpq.so.5.17")
    _touch(root / "usr" / "pgsql-17" / "include" / "libpq-fe.h")
    return root


@pytest.fixture
def src_base(tmp_path):
    base = tmp_path / "src_base"
    _touch(
        base / "17.06" / SCRIPT,
        "my $driver_level = 17.06;\n"
        "  Description     = ODBC version 17.06 for PostgreSQL\n"
        'my $lib = "$root/artifacts/Teamcenter/lnx64/psqlODBC/17.06/lib/psqlodbcw.so";\n',
    )
    (base / "16.00").mkdir()
    return base


@pytest.fixture
def cfg(tmp_path, src_base):
    return LinuxConfig(
        build_version_dir=tmp_path / "tb" / "17.06.0006",
        src_base_dir=src_base,
        driver_rpm=tmp_path / "dl" / "driver.rpm",
        driver_url="https://example.invalid/driver.rpm",
        nproc=2,
        make="make",
        sandbox_root=tmp_path / "sandbox",
        toolbox_root=tmp_path / "toolbox",
    )


BUILD = BuildConfig(base_version="17", secondary_version=".06", third_version=".0006")


def _builder(cfg, sysroot, host, *, mimalloc):
    runner = StepRunner(FakeLogger(), stream=False)
    return LinuxDriverBuilder(BUILD, cfg, runner, FakeLogger(), mimalloc=mimalloc, fetcher=host.fetch, sysroot=sysroot), runner


@pytest.mark.unit
class TestStandardPipeline:
    def test_builds_tree(self, cfg, sysroot):
        host = FakeHost(cfg.local_prefix)
        builder, runner = _builder(cfg, sysroot, host, mimalloc=False)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
            root = builder.build()

        lib = root / "lib"
        assert (lib / "psqlodbcw.so").read_text() == "psqlodbcw.so"
        assert (lib / "libpsqlodbc.so").is_file() and not (lib / "libpsqlodbc.so").is_symlink()
        assert (lib / "libodbc.so.2").exists()
        assert (lib / "libpq.so.5.17").exists()
        assert os.readlink(lib / "libpq.so") == "libpq.so.5"
        assert os.readlink(lib / "libssl.so.3") == "libssl.so.3.0.7"
        assert (root / "inc" / "sql.h").exists()
        assert (root / "inc" / "unixodbc_conf.h").exists()
        assert not (root / "usr").exists()
        assert not cfg.driver_rpm.exists()

        script = (root / SCRIPT).read_text()
        assert "Description     = ODBC version 17.06.0006-mimalloc for PostgreSQL" in script
        assert "psqlODBC/17.06.0006/lib/psqlodbcw.so" in script

        warned = " ".join(r.message for r in runner.warnings)
        assert "libodbcinst.so" in warned
        assert "libcrypto.so.3 NOT FOUND" in warned

    def test_rpm_extracted_in_build_dir(self, cfg, sysroot):
        host = FakeHost(cfg.local_prefix)
        builder, _ = _builder(cfg, sysroot, host, mimalloc=False)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
            builder.build()
        shells = [(argv, cwd) for argv, cwd in host.calls if argv[0] == "/bin/sh"]
        assert len(shells) == 1
        assert shells[0][1] == cfg.build_version_dir
        assert host.fetched == [cfg.driver_url]

    def test_missing_extracted_dir_is_fatal(self, cfg, sysroot):
        host = FakeHost(cfg.local_prefix)
        builder, _ = _builder(cfg, sysroot, host, mimalloc=False)

        def no_extract(logger, argv, **kw):
            return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

        with patch("odbckit.build.steps.U.run_cmd", side_effect=no_extract):
            with pytest.raises(Fatal) as ei:
                builder.build()
        assert "Expected extracted directory" in ei.value.msg

    def test_missing_register_script_is_fatal(self, cfg, sysroot, src_base):
        (src_base / "17.06" / SCRIPT).unlink()
        host = FakeHost(cfg.local_prefix)
        builder, _ = _builder(cfg, sysroot, host, mimalloc=False)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
            with pytest.raises(Fatal):
                builder.build()


@pytest.mark.unit
class TestMimallocPipeline:
    def test_builds_toolbox(self, cfg, sysroot):
        host = FakeHost(cfg.local_prefix)
        builder, runner = _builder(cfg, sysroot, host, mimalloc=True)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
            out = builder.build()

        assert out == cfg.toolbox_root
        lib = cfg.toolbox_lib
        assert (lib / "psqlodbcw.so").read_text() == "built"
        assert (lib / "libmimalloc.so.2").exists()
        assert (lib / "libltdl.so.7").exists()
        assert os.readlink(lib / "libpsqlodbc.so") == "psqlodbcw.so"
        assert os.readlink(lib / "libpq.so.5") == "libpq.so.5.17"
        assert os.readlink(lib / "libpq.so") == "libpq.so.5"
        assert (cfg.toolbox_inc / "libpq-fe.h").exists()
        assert (cfg.toolbox_inc / "sql.h").exists()

        assert (cfg.sandbox_root / RPM_MARKER).exists()
        assert not (cfg.sandbox_root / "usr").exists()
        assert not cfg.driver_rpm.exists()

        script = (cfg.toolbox_root / SCRIPT).read_text()
        assert script.startswith("my $driver_level = 17.06;\n")
        assert not list(cfg.sandbox_root.glob("*.tar.gz"))

    def test_configure_flags(self, cfg, sysroot):
        host = FakeHost(cfg.local_prefix)
        builder, _ = _builder(cfg, sysroot, host, mimalloc=True)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
            builder.build()

        configure = [argv for argv, _ in host.calls if argv[0] == "../configure"]
        assert len(configure) == 1
        argv = configure[0]
        assert "--with-mimalloc" in argv
        assert f"--prefix={cfg.local_prefix}" in argv
        assert any(a.startswith("LDFLAGS=") and "-lmimalloc -lltdl -lpq" in a for a in argv)
        assert ["autoreconf", "-fi"] in [a for a, _ in host.calls]
        assert ["make", "-j2"] in [a for a, _ in host.calls]

    def test_rpm_marker_skips_download(self, cfg, sysroot):
        _touch(cfg.sandbox_root / RPM_MARKER)
        host = FakeHost(cfg.local_prefix)
        builder, runner = _builder(cfg, sysroot, host, mimalloc=True)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
            builder.build()
        assert cfg.driver_url not in host.fetched
        assert any(r.step == "rpm_libs" for r in runner.warnings)

    def test_package_writes_tarball(self, cfg, sysroot):
        from dataclasses import replace

        cfg = replace(cfg, package=True)
        host = FakeHost(cfg.local_prefix)
        builder, _ = _builder(cfg, sysroot, host, mimalloc=True)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
            builder.build()
        assert (cfg.toolbox_root / "manifest.json").exists()
        assert len(list(cfg.sandbox_root.glob("psqlodbc-*.tar.gz"))) == 1

    def test_make_failure_stops_build(self, cfg, sysroot):
        host = FakeHost(cfg.local_prefix)
        builder, runner = _builder(cfg, sysroot, host, mimalloc=True)

        def failing(logger, argv, **kw):
            if argv[0] == "cmake":
                return subprocess.CompletedProcess(argv, 1, stdout="", stderr="")
            return host.run_cmd(logger, argv, **kw)

        with patch("odbckit.build.steps.U.run_cmd", side_effect=failing):
            with pytest.raises(Fatal) as ei:
                builder.build()
        assert ei.value.msg.startswith("Failed: cmake ..")
        assert not (cfg.toolbox_lib / "psqlodbcw.so").exists()


@pytest.mark.unit
class TestRegisterScriptVersion:
    def test_rules_built_from_latest_version(self, cfg, sysroot, src_base):
        (src_base / "17.10").mkdir()
        _touch(src_base / "17.10" / SCRIPT, "my $driver_level = 17.06;\n")
        host = FakeHost(cfg.local_prefix)
        builder, _ = _builder(cfg, sysroot, host, mimalloc=True)
        with patch.object(LinuxDriverBuilder, "_mimalloc_script_rules", autospec=True, side_effect=LinuxDriverBuilder._mimalloc_script_rules) as rules:
            with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
                builder.build()
        assert [c.args[1] for c in rules.call_args_list] == ["17.10"]
        assert (cfg.toolbox_root / SCRIPT).read_text() == "my $driver_level = 17.10;\n"

    def test_no_version_dir_builds_no_rules(self, cfg, sysroot, src_base):
        (src_base / "17.06" / SCRIPT).unlink()
        (src_base / "17.06").rmdir()
        (src_base / "16.00").rmdir()
        host = FakeHost(cfg.local_prefix)
        builder, runner = _builder(cfg, sysroot, host, mimalloc=True)
        with patch.object(LinuxDriverBuilder, "_mimalloc_script_rules") as rules:
            with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
                builder.build()
        rules.assert_not_called()
        assert not (cfg.toolbox_root / SCRIPT).exists()
        assert any(r.step == "register_script" for r in runner.warnings)


@pytest.mark.unit
class TestFilesystemFailures:
    def test_blocked_build_dir_is_fatal(self, cfg, sysroot):
        _touch(cfg.build_version_dir)
        host = FakeHost(cfg.local_prefix)
        builder, runner = _builder(cfg, sysroot, host, mimalloc=False)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=host.run_cmd):
            with pytest.raises(Fatal) as ei:
                builder.build()
        assert ei.value.context["step"] == "prepare_dirs"
        assert ei.value.msg.startswith(f"Create {cfg.build_version_dir / 'lib'} failed: ")
        assert runner.results[-1].step == "prepare_dirs"
        assert not runner.results[-1].ok

    def test_blocked_psqlodbc_build_dir_is_fatal(self, cfg, sysroot):
        host = FakeHost(cfg.local_prefix)
        builder, runner = _builder(cfg, sysroot, host, mimalloc=True)

        def run(logger, argv, **kw):
            cp = host.run_cmd(logger, argv, **kw)
            if argv[0] == "tar" and "psqlodbc-" in argv[2]:
                for src in cfg.sandbox_root.glob("psqlodbc-*"):
                    _touch(src / "build", "not a directory")
            return cp

        with patch("odbckit.build.steps.U.run_cmd", side_effect=run):
            with pytest.raises(Fatal) as ei:
                builder.build()
        assert ei.value.context["step"] == "psqlodbc_build"
        assert "File exists" in ei.value.msg
        assert not [argv for argv, _ in host.calls if argv[0] == "../configure"]
