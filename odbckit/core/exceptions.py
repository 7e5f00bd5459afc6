# SPDX-License-Identifier: LGPL-3.0-or-later
# odbckit/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    # Exit codes are 0..255.
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    # Stable order, single-line.
    return ", ".join(f"{k}={ctx[k]!r}" for k in sorted(ctx.keys(), key=str))


@dataclass(eq=False)
class OdbcKitError(Exception):
    """
    Base project error with:
      - stable fields for reporting
      - readable __str__ (what users see)
      - exit code clamped to 0..255
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        if self.context is None:
            self.context = {}
        super().__init__(self.msg)
        self.args = (self.msg,)

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        parts = [self.msg or self.__class__.__name__]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context))}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message()


class Fatal(OdbcKitError):
    """
    User-facing fatal error (exit code is honored by the CLI main()).
    """
    pass


@dataclass(eq=False)
class PrerequisiteError(Fatal):
    """
    A required tool or input is missing on this host.

    The CLI prints `msg` and then `remediation` verbatim to stdout; the
    remediation may span several lines, unlike `msg`.
    """
    remediation: str = ""


class RegistryIOError(Fatal):
    """
    The driver-manager configuration file could not be read or written.
    """
    pass


class CommandError(Fatal):
    """
    A required external command failed. `msg` echoes the command line.
    """
    pass


class DownloadError(Fatal):
    """
    Fetching a source archive or installer failed.
    """
    pass


def wrap_io(msg: str, exc: OSError, code: int = 1, **context: Any) -> RegistryIOError:
    """Wrap an OSError keeping the system error string in the message."""
    reason = exc.strerror or str(exc)
    return RegistryIOError(code=code, msg=f"{msg}: {reason}", cause=exc, context=context or None)


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, OdbcKitError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
