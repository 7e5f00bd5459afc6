# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import subprocess
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from fakes.fake_logger import FakeLogger
from odbckit.build.steps import StepRunner
from odbckit.build.windows import WindowsDriverPackager, to_windows_path
from odbckit.config.build_config import BuildConfig, WindowsConfig
from odbckit.core.exceptions import CommandError, Fatal

BUILD = BuildConfig(base_version="17", secondary_version=".06")


def _touch(p: Path, data: str = "x") -> Path:
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(data)
    return p


@pytest.fixture
def cfg(tmp_path):
    return WindowsConfig(
        windows_dir=tmp_path / "win" / "17.06",
        windows_msi_url="https://example.invalid/psqlodbc_x64.msi",
        temp_extract_dir=tmp_path / "psqlodbc_install",
    )


def _packager(cfg, fetched):
    def fetch(url, dest, logger=None):
        fetched.append(url)
        return _touch(Path(dest), "msi")

    runner = StepRunner(FakeLogger(), stream=False)
    return WindowsDriverPackager(BUILD, cfg, runner, FakeLogger(), fetcher=fetch), runner


def _msiexec(cfg, *, with_bin=True, with_readme=True, rc=0):
    calls = []

    def run(logger, argv, **kw):
        calls.append(list(argv))
        root = cfg.temp_extract_dir / "PFiles64" / "psqlODBC" / "17.06"
        if with_bin:
            _touch(root / "bin" / "psqlodbc35w.dll")
            _touch(root / "bin" / "libpq.dll")
            _touch(root / "bin" / "notes.txt")
        if with_readme:
            _touch(root / "docs" / "README.txt", "readme")
        return subprocess.CompletedProcess(argv, rc, stdout="", stderr="")

    return run, calls


@pytest.mark.unit
class TestWindowsPath:
    def test_msys_drive(self):
        assert to_windows_path("/c/temp/psqlodbc_install") == "C:\\temp\\psqlodbc_install"

    def test_bare_drive(self):
        assert to_windows_path("/d") == "D:"

    def test_plain_path(self):
        assert to_windows_path("C:/x/y.msi") == "C:\\x\\y.msi"


@pytest.mark.unit
class TestWindowsPackager:
    def test_full_run(self, cfg):
        fetched = []
        packager, runner = _packager(cfg, fetched)
        run, calls = _msiexec(cfg)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=run):
            zip_path = packager.build()

        assert fetched == [cfg.windows_msi_url]
        assert calls[0][:2] == ["msiexec", "/a"]
        assert "/qn" in calls[0]
        assert calls[0][-1].startswith("TARGETDIR=")

        assert sorted(p.name for p in cfg.lib_dir.iterdir()) == ["libpq.dll", "psqlodbc35w.dll"]
        with zipfile.ZipFile(zip_path) as zf:
            assert sorted(zf.namelist()) == ["README.txt", "psqlodbc_x64.msi"]
            assert zf.read("README.txt") == b"readme"

        assert not (cfg.windows_dir / "psqlodbc_x64.msi").exists()
        assert not (cfg.windows_dir / "README.txt").exists()
        assert not cfg.temp_extract_dir.exists()
        assert runner.warnings == []

    def test_existing_msi_is_not_downloaded(self, cfg):
        _touch(cfg.windows_dir / "psqlodbc_x64.msi", "local")
        fetched = []
        packager, _ = _packager(cfg, fetched)
        run, _ = _msiexec(cfg)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=run):
            zip_path = packager.build()
        assert fetched == []
        with zipfile.ZipFile(zip_path) as zf:
            assert zf.read("psqlodbc_x64.msi") == b"local"

    def test_stale_temp_dir_is_recreated(self, cfg):
        _touch(cfg.temp_extract_dir / "leftover.txt")
        packager, _ = _packager(cfg, [])
        seen = []

        def run(logger, argv, **kw):
            seen.append(sorted(p.name for p in cfg.temp_extract_dir.iterdir()))
            return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

        with patch("odbckit.build.steps.U.run_cmd", side_effect=run):
            packager.build()
        assert seen == [[]]

    def test_missing_bin_and_readme_warn(self, cfg):
        packager, runner = _packager(cfg, [])
        run, _ = _msiexec(cfg, with_bin=False, with_readme=False)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=run):
            zip_path = packager.build()

        steps = [r.step for r in runner.warnings]
        assert "dll_copy" in steps and "readme_copy" in steps and "zip_create" in steps
        with zipfile.ZipFile(zip_path) as zf:
            assert zf.namelist() == ["psqlodbc_x64.msi"]

    def test_msiexec_failure_is_fatal(self, cfg):
        packager, _ = _packager(cfg, [])
        run, _ = _msiexec(cfg, rc=1603)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=run):
            with pytest.raises(CommandError):
                packager.build()
        assert not (cfg.windows_dir / cfg.zip_name).exists()

    def test_temp_dir_blocked_by_file_is_fatal(self, cfg):
        _touch(cfg.temp_extract_dir, "stray file")
        packager, runner = _packager(cfg, [])
        run, calls = _msiexec(cfg)
        with patch("odbckit.build.steps.U.run_cmd", side_effect=run):
            with pytest.raises(Fatal) as ei:
                packager.build()
        assert ei.value.context["step"] == "msi_extract"
        assert "File exists" in ei.value.msg
        assert calls == []
        assert runner.results[-1].step == "msi_extract"
        assert not runner.results[-1].ok
