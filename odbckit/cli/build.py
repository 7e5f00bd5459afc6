# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/cli/build.py
"""
odbckit-build: prepare the psqlODBC driver tree for this platform.

Flow:
  Phase 0: parse only the flags needed to locate config/logging
  Phase 1: load+merge config files
  Phase 2: apply top-level config keys as parser defaults
  Phase 3: full parse, dispatch on platform
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from ..build.linux import LinuxDriverBuilder
from ..build.steps import StepRunner
from ..build.windows import WindowsDriverPackager
from ..config.build_config import BuildConfig
from ..config.config_loader import Config
from ..core.exceptions import Fatal, OdbcKitError, format_exception_for_cli
from ..core.logger import Log, c
from ..core.utils import U

PLATFORMS = ("linux", "windows")


def default_platform(sys_platform: Optional[str] = None) -> str:
    p = sys_platform or sys.platform
    if p.startswith("linux"):
        return "linux"
    if p.startswith(("win32", "cygwin", "msys")):
        return "windows"
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--dump-config", action="store_true")
    return pre


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="odbckit-build",
        description=c("odbckit-build: psqlODBC driver preparation for TOOLBOX", "green", ["bold"]),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("--config", action="append", default=[], help="YAML/JSON build config (repeatable, globs ok)")
    p.add_argument("--platform", default=default_platform(), help="linux or windows")
    p.add_argument("--no-mimalloc", dest="mimalloc", action="store_false", help="Linux: standard RPM-based pipeline")
    p.add_argument("--package", action="store_true", default=None, help="Linux mimalloc: also write manifest + tarball")
    p.add_argument("-v", "--verbose", action="count", default=0)
    p.add_argument("--log-file", dest="log_file", default=None)
    p.add_argument("--dump-config", action="store_true", help="Print the merged config and exit")
    return p


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Optional[logging.Logger] = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], logging.Logger]:
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()
    args0, _rest = _build_preparser().parse_known_args(argv)

    if logger is None:
        logger = Log.setup(args0.verbose, args0.log_file)

    conf: Dict[str, Any] = {}
    if args0.config:
        conf = Config.load_many(logger, Config.expand_configs(logger, list(args0.config)))

    if args0.dump_config:
        print(U.json_dump(conf))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)
    return parser.parse_args(argv), conf, logger


def run(args: argparse.Namespace, conf: Dict[str, Any], logger: logging.Logger, runner: StepRunner) -> Path:
    if not conf:
        raise Fatal(2, "No build config given (use --config FILE)")
    build = BuildConfig.from_dict(conf)

    if args.platform == "linux":
        cfg = build.linux(environ=os.environ)
        if args.package is not None:
            cfg = replace(cfg, package=bool(args.package))
        return LinuxDriverBuilder(build, cfg, runner, logger, mimalloc=args.mimalloc).build()

    if args.platform == "windows":
        return WindowsDriverPackager(build, build.windows(), runner, logger).build()

    raise Fatal(1, f"Unsupported platform: {args.platform}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    logger: Optional[logging.Logger] = None
    try:
        args, conf, logger = parse_args_with_config(argv)
    except Fatal as e:
        print(f"💥 ERROR    {e}", file=sys.stderr)
        raise SystemExit(e.code)

    runner = StepRunner(logger)
    try:
        out = run(args, conf, logger, runner)
        Log.ok(logger, f"Done: {out}", warnings=len(runner.warnings))
        rc = 0
    except OdbcKitError as e:
        Log.fail(logger, format_exception_for_cli(e, verbose=args.verbose))
        rc = e.code
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (Ctrl+C).")
        rc = 130

    if runner.results:
        runner.print_summary()
    raise SystemExit(rc)


if __name__ == "__main__":
    main()
