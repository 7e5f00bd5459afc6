# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/build/steps.py
"""
Outcome model for external build steps.

Every call site has an id and the POLICY table says whether its failure is
fatal (REQUIRED) or only reported (BEST_EFFORT). Nothing is retried.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, TypeVar, Union

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..core.exceptions import CommandError, Fatal, OdbcKitError
from ..core.logger import Log
from ..core.utils import U

T = TypeVar("T")


class StepStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    FATAL = "fatal"


class Policy(str, Enum):
    REQUIRED = "required"
    BEST_EFFORT = "best-effort"


POLICY: Dict[str, Policy] = {
    # linux
    "prepare_dirs": Policy.REQUIRED,
    "system_packages": Policy.BEST_EFFORT,
    "rpm_download": Policy.REQUIRED,
    "rpm_extract": Policy.REQUIRED,
    "rpm_marker": Policy.BEST_EFFORT,
    "rpm_cleanup": Policy.BEST_EFFORT,
    "rpm_libs": Policy.REQUIRED,
    "system_libs": Policy.BEST_EFFORT,
    "system_headers": Policy.BEST_EFFORT,
    "libtool_build": Policy.REQUIRED,
    "mimalloc_build": Policy.REQUIRED,
    "psqlodbc_build": Policy.REQUIRED,
    "openssl_copy": Policy.BEST_EFFORT,
    "lib_copy": Policy.BEST_EFFORT,
    "symlinks": Policy.BEST_EFFORT,
    "header_copy": Policy.BEST_EFFORT,
    "register_script": Policy.BEST_EFFORT,
    "package_tarball": Policy.REQUIRED,
    # windows
    "msi_download": Policy.REQUIRED,
    "msi_extract": Policy.REQUIRED,
    "dll_copy": Policy.REQUIRED,
    "readme_copy": Policy.BEST_EFFORT,
    "zip_create": Policy.REQUIRED,
    "cleanup": Policy.BEST_EFFORT,
}


def policy_for(step: str) -> Policy:
    try:
        return POLICY[step]
    except KeyError:
        raise Fatal(1, f"No policy registered for build step '{step}'")


@dataclass
class StepResult:
    step: str
    status: StepStatus
    message: str = ""
    returncode: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status is StepStatus.SUCCESS


class StepRunner:
    """
    Runs commands and in-process operations under the POLICY table.

    REQUIRED failures raise (CommandError for commands, Fatal otherwise)
    after recording a FATAL result; BEST_EFFORT failures are logged as
    warnings and returned as WARNING results.
    """

    def __init__(self, logger: logging.Logger, *, stream: bool = True, policy: Optional[Dict[str, Policy]] = None):
        self.logger = logger
        self.stream = stream
        self.policy = dict(policy or POLICY)
        self.results: List[StepResult] = []

    def _policy(self, step: str) -> Policy:
        if step not in self.policy:
            return policy_for(step)
        return self.policy[step]

    def _record(self, result: StepResult) -> StepResult:
        self.results.append(result)
        return result

    def run(self, step: str, argv: List[str], *, cwd: Optional[Union[str, Path]] = None) -> StepResult:
        pol = self._policy(step)
        pretty = U.pretty_cmd(argv)
        tag = "RUN" if pol is Policy.REQUIRED else "RUN (warn)"
        self.logger.info("%s: %s", tag, pretty)

        try:
            cp = U.run_cmd(self.logger, argv, check=False, cwd=cwd, stream=self.stream)
            rc: Optional[int] = cp.returncode
            err = "" if rc == 0 else f"exit status {rc}"
        except (OSError, subprocess.SubprocessError) as e:
            rc, err = None, str(e)

        if not err:
            return self._record(StepResult(step, StepStatus.SUCCESS, pretty, rc))

        if pol is Policy.BEST_EFFORT:
            Log.warn(self.logger, f"Warning: command failed: {pretty}", step=step, reason=err)
            return self._record(StepResult(step, StepStatus.WARNING, f"{pretty}: {err}", rc))

        self._record(StepResult(step, StepStatus.FATAL, f"{pretty}: {err}", rc))
        raise CommandError(code=1, msg=f"Failed: {pretty}", context={"step": step, "reason": err})

    def shell(self, step: str, command: str, *, cwd: Optional[Union[str, Path]] = None) -> StepResult:
        """For the few steps that are a pipeline (rpm2cpio | cpio)."""
        return self.run(step, ["/bin/sh", "-c", command], cwd=cwd)

    def guard(self, step: str, what: str, fn: Callable[[], T]) -> Optional[T]:
        """
        Apply the step policy to an in-process operation that may raise OSError
        (copies, symlinks, renames). Returns fn()'s value, or None on a
        best-effort failure.
        """
        pol = self._policy(step)
        try:
            value = fn()
        except OdbcKitError as e:
            self._record(StepResult(step, StepStatus.FATAL, f"{what}: {e.msg}"))
            raise
        except OSError as e:
            reason = e.strerror or str(e)
            if pol is Policy.BEST_EFFORT:
                Log.warn(self.logger, f"{what} failed", step=step, reason=reason)
                self._record(StepResult(step, StepStatus.WARNING, f"{what}: {reason}"))
                return None
            self._record(StepResult(step, StepStatus.FATAL, f"{what}: {reason}"))
            raise Fatal(1, f"{what} failed: {reason}", cause=e, context={"step": step})
        self._record(StepResult(step, StepStatus.SUCCESS, what))
        return value

    def warn(self, step: str, message: str) -> StepResult:
        """Record a non-command warning (missing optional input, etc.)."""
        Log.warn(self.logger, message, step=step)
        return self._record(StepResult(step, StepStatus.WARNING, message))

    def fail(self, step: str, message: str) -> None:
        self._record(StepResult(step, StepStatus.FATAL, message))
        raise Fatal(1, message, context={"step": step})

    @property
    def warnings(self) -> List[StepResult]:
        return [r for r in self.results if r.status is StepStatus.WARNING]

    def summary_table(self) -> Table:
        table = Table(title="Build steps")
        table.add_column("Step")
        table.add_column("Status")
        table.add_column("Detail", overflow="fold")
        colors = {StepStatus.SUCCESS: "green", StepStatus.WARNING: "yellow", StepStatus.FATAL: "red"}
        for r in self.results:
            table.add_row(r.step, f"[{colors[r.status]}]{r.status.value}[/]", escape(r.message))
        return table

    def print_summary(self, console: Optional[Console] = None) -> None:
        (console or Console(stderr=True)).print(self.summary_table())
