# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/cli/register.py
"""
odbckit-register: make odbcinst.ini hold exactly one up-to-date PostgreSQL
driver section.
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Mapping, Optional, Sequence

from ..core.exceptions import OdbcKitError, PrerequisiteError, format_exception_for_cli
from ..core.logger import Log
from ..registry import DEFAULT_DRIVER_LEVEL, DEFAULT_SECTION, DriverEntry, OdbcInst, RegistryManager, resolve_driver_path

SUCCESS_MESSAGE = "The odbcinst.ini file has been modified successfully with PostgreSQL entries."

USAGE = """\
Usage: odbckit-register [options]

  --teamcenter_root_foss_directory DIR   Teamcenter root FOSS directory
                                         (default: $FOSS_REPOSITORY_HOME)
  --driver_lib_path PATH                 psqlodbcw.so to register; overrides the FOSS directory
  --section NAME                         driver section name (default: {section})
  --driver-level LEVEL                   driver level used in the default path and
                                         description (default: {level})
  --odbcinst-ini PATH                    edit PATH instead of asking `odbcinst -j`;
                                         presence is then read from PATH itself
  -v, --verbose                          more logging (repeatable)
  --log-file FILE                        also log to FILE
  -h, --help                             print this help and exit
""".format(section=DEFAULT_SECTION, level=DEFAULT_DRIVER_LEVEL)


class _HelpAction(argparse.Action):
    """Print usage to stdout and exit 1, like the historic installer script."""

    def __init__(self, option_strings, dest=argparse.SUPPRESS, default=argparse.SUPPRESS, help=None):
        super().__init__(option_strings=option_strings, dest=dest, default=default, nargs=0, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        sys.stdout.write(USAGE)
        sys.stdout.flush()
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="odbckit-register",
        add_help=False,
    )
    p.add_argument("-h", "--help", action=_HelpAction)
    p.add_argument("--teamcenter_root_foss_directory", "--foss-root", dest="foss_root", default=None)
    p.add_argument("--driver_lib_path", "--driver-lib-path", dest="driver_lib_path", default=None)
    p.add_argument("--section", default=DEFAULT_SECTION)
    p.add_argument("--driver-level", dest="driver_level", default=DEFAULT_DRIVER_LEVEL)
    p.add_argument("--odbcinst-ini", dest="odbcinst_ini", default=None)
    p.add_argument("-v", "--verbose", action="count", default=0)
    p.add_argument("--log-file", dest="log_file", default=None)
    return p


def run(args: argparse.Namespace, logger, *, odbcinst: Optional[OdbcInst] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    tool = odbcinst or OdbcInst(logger)
    tool.require()

    # Resolve before touching the file so a bad invocation leaves it as it was.
    lib_path = resolve_driver_path(
        override=args.driver_lib_path,
        foss_root=args.foss_root,
        environ=os.environ if environ is None else environ,
        driver_level=args.driver_level,
    )
    entry = DriverEntry.for_library(lib_path, driver_level=args.driver_level)

    ini_path = args.odbcinst_ini or tool.locate_config()
    Log.step(logger, f"Registering [{args.section}] in {ini_path}", driver=lib_path)

    # odbcinst -q reads its own drivers file, not an --odbcinst-ini override
    manager = RegistryManager(odbcinst=tool, logger=logger, presence_from_file=bool(args.odbcinst_ini))
    manager.upsert(ini_path, args.section, entry)

    print(SUCCESS_MESSAGE)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logger = Log.setup(args.verbose, args.log_file, logger_name="odbckit")

    try:
        rc = run(args, logger)
    except PrerequisiteError as e:
        sys.stdout.write(e.msg + "\n" + e.remediation)
        sys.stdout.flush()
        logger.debug("prerequisite failed: %s", format_exception_for_cli(e, verbose=2))
        rc = e.code
    except OdbcKitError as e:
        Log.fail(logger, format_exception_for_cli(e, verbose=args.verbose))
        rc = e.code
    except KeyboardInterrupt:
        logger.warning("Interrupted by user (Ctrl+C).")
        rc = 130

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
