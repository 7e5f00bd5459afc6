# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import logging
import os
from unittest.mock import patch

import pytest

from fakes.fake_odbcinst import FakeOdbcInst
from odbckit.cli import register
from odbckit.core.exceptions import PrerequisiteError
from odbckit.registry.entry import FOSS_ROOT_ENV
from odbckit.registry.odbcinst import NOT_FOUND_MARKER


def _args(*argv):
    return register.build_parser().parse_args(list(argv))


def _stub_odbcinst(monkeypatch, tmp_path, drivers_file, query_output):
    """Put a shell-script odbcinst on PATH: `-j` names drivers_file, `-q` prints query_output."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "odbcinst"
    script.write_text(
        "#!/bin/sh\n"
        "if [ \"$1\" = \"-j\" ]; then\n"
        "  echo \"unixODBC 2.3.9\"\n"
        f"  echo \"DRIVERS............: {drivers_file}\"\n"
        "  exit 0\n"
        "fi\n"
        f"echo \"{query_output}\" >&2\n"
        "exit 1\n"
    )
    script.chmod(0o755)
    monkeypatch.setenv("PATH", str(bin_dir) + os.pathsep + os.environ.get("PATH", ""))


@pytest.mark.unit
class TestParser:
    def test_help_goes_to_stdout_and_exits_1(self, capsys):
        with pytest.raises(SystemExit) as ei:
            register.build_parser().parse_args(["--help"])
        assert ei.value.code == 1
        out = capsys.readouterr().out
        assert "--teamcenter_root_foss_directory" in out
        assert "--driver_lib_path" in out

    def test_aliases(self):
        a = _args("--foss-root", "/foss", "--driver-lib-path", "/x.so")
        assert a.foss_root == "/foss"
        assert a.driver_lib_path == "/x.so"

    def test_defaults(self):
        a = _args()
        assert a.section == "PostgreSQL_TC_x64"
        assert a.driver_level == "17.06"
        assert a.odbcinst_ini is None


@pytest.mark.unit
class TestRun:
    def test_inserts_entry(self, ini_file, logger, capsys):
        p = ini_file(b"[Other]\nDriver=/o\n")
        rc = register.run(_args("--odbcinst-ini", str(p), "--driver_lib_path", "/lib/psqlodbcw.so"), logger, odbcinst=FakeOdbcInst(p), environ={})
        assert rc == 0
        assert register.SUCCESS_MESSAGE in capsys.readouterr().out
        text = p.read_text()
        assert text.startswith("[Other]\nDriver=/o\n\n[PostgreSQL_TC_x64]\n")
        assert "Driver64        = /lib/psqlodbcw.so\n" in text
        assert "Description     = ODBC version 17.06 for PostgreSQL\n" in text

    def test_uses_located_config(self, ini_file, logger):
        p = ini_file(b"")
        register.run(_args("--foss-root", "/foss"), logger, odbcinst=FakeOdbcInst(p), environ={})
        assert "/foss/artifacts/Teamcenter/lnx64/psqlODBC/17.06/lib/psqlodbcw.so" in p.read_text()

    def test_environment_root(self, ini_file, logger):
        p = ini_file(b"")
        register.run(_args(), logger, odbcinst=FakeOdbcInst(p), environ={FOSS_ROOT_ENV: "/envfoss"})
        assert "Driver          = /envfoss/" in p.read_text()

    def test_unresolvable_path_leaves_file_untouched(self, ini_file, logger):
        original = b"[PostgreSQL_TC_x64]\nDriver=/old.so\n"
        p = ini_file(original)
        with pytest.raises(PrerequisiteError):
            register.run(_args(), logger, odbcinst=FakeOdbcInst(p), environ={})
        assert p.read_bytes() == original

    def test_rerun_is_stable(self, ini_file, logger):
        p = ini_file(b"[A]\nx=1\n")
        args = _args("--driver_lib_path", "/x.so", "--section", "PG")
        register.run(args, logger, odbcinst=FakeOdbcInst(p), environ={})
        once = p.read_bytes()
        register.run(args, logger, odbcinst=FakeOdbcInst(p), environ={})
        assert p.read_bytes() == once


@pytest.mark.unit
class TestMain:
    def test_missing_driver_manager(self, capsys):
        with patch("odbckit.registry.odbcinst.U.which", return_value=None):
            with pytest.raises(SystemExit) as ei:
                register.main(["--driver_lib_path", "/x.so"])
        assert ei.value.code == 1
        assert "unixODBC driver manager is not installed" in capsys.readouterr().out

    def test_success_exit_0(self, ini_file, capsys):
        p = ini_file(b"")
        with patch.object(register, "OdbcInst", lambda logger: FakeOdbcInst(p)):
            with pytest.raises(SystemExit) as ei:
                register.main(["--odbcinst-ini", str(p), "--teamcenter_root_foss_directory", "/foss"])
        assert ei.value.code == 0
        assert register.SUCCESS_MESSAGE in capsys.readouterr().out

    def test_missing_root_exit_1(self, ini_file, capsys, monkeypatch):
        monkeypatch.delenv(FOSS_ROOT_ENV, raising=False)
        p = ini_file(b"")
        with patch.object(register, "OdbcInst", lambda logger: FakeOdbcInst(p)):
            with pytest.raises(SystemExit) as ei:
                register.main([])
        assert ei.value.code == 1
        out = capsys.readouterr().out
        assert out.count("cannot be found") == 1
        assert "--teamcenter_root_foss_directory" in out

    def test_io_error_exit_1(self, tmp_path, capsys):
        p = tmp_path / "no-such-dir" / "odbcinst.ini"
        with patch.object(register, "OdbcInst", lambda logger: FakeOdbcInst(p)):
            with pytest.raises(SystemExit) as ei:
                register.main(["--driver_lib_path", "/x.so"])
        assert ei.value.code == 1
        assert register.SUCCESS_MESSAGE not in capsys.readouterr().out

    def teardown_method(self):
        logger = logging.getLogger("odbckit")
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()


@pytest.mark.unit
class TestMainAgainstOdbcinstScript:
    def _main(self, argv):
        with pytest.raises(SystemExit) as ei:
            register.main(argv)
        return ei.value.code

    def test_override_file_keeps_one_section_when_odbcinst_says_absent(self, tmp_path, monkeypatch, capsys):
        _stub_odbcinst(monkeypatch, tmp_path, tmp_path / "system.ini", f"odbcinst: {NOT_FOUND_MARKER} Invalid property")
        custom = tmp_path / "custom.ini"
        custom.write_text("[A]\nx=1\n")
        argv = ["--odbcinst-ini", str(custom), "--driver_lib_path", "/x.so"]

        assert self._main(argv) == 0
        once = custom.read_bytes()
        assert self._main(argv) == 0

        assert custom.read_bytes() == once
        assert custom.read_text().count("[PostgreSQL_TC_x64]") == 1
        assert capsys.readouterr().out.count(register.SUCCESS_MESSAGE) == 2

    def test_override_file_existing_section_is_replaced(self, tmp_path, monkeypatch):
        _stub_odbcinst(monkeypatch, tmp_path, tmp_path / "system.ini", f"odbcinst: {NOT_FOUND_MARKER} Invalid property")
        custom = tmp_path / "custom.ini"
        custom.write_text("[PostgreSQL_TC_x64]\nDriver=/old.so\n")

        assert self._main(["--odbcinst-ini", str(custom), "--driver_lib_path", "/x.so"]) == 0

        text = custom.read_text()
        assert "/old.so" not in text
        assert text.count("[PostgreSQL_TC_x64]") == 1

    def test_odbcinst_says_present_but_file_lacks_section(self, tmp_path, monkeypatch):
        system = tmp_path / "odbcinst.ini"
        system.write_text("[A]\nx=1\n")
        _stub_odbcinst(monkeypatch, tmp_path, system, "[PostgreSQL_TC_x64]")

        assert self._main(["--driver_lib_path", "/x.so"]) == 0

        text = system.read_text()
        assert text.startswith("[A]\nx=1\n\n[PostgreSQL_TC_x64]\n")
        assert text.count("[PostgreSQL_TC_x64]") == 1

    def teardown_method(self):
        logger = logging.getLogger("odbckit")
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
