# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/registry/ini.py
"""
Line-level model of odbcinst.ini.

The file is never round-tripped through configparser: every line we do not
own is kept byte-for-byte (comments, odd spacing, CRLF endings, duplicate
keys). A section is a header line `[name]` plus every following line up to
the next header or EOF.
"""

from __future__ import annotations

import re
from typing import List, Optional, Sequence, Tuple

# whole line, no surrounding whitespace
_HEADER_RE = re.compile(r"^\[([^\]\r\n]*)\]$")

FIELD_KEY_WIDTH = 16


def strip_eol(line: str) -> str:
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith("\n") or line.endswith("\r"):
        return line[:-1]
    return line


def header_name(line: str) -> Optional[str]:
    """Section name if `line` is a header line, else None."""
    m = _HEADER_RE.match(strip_eol(line))
    return m.group(1) if m else None


def find_sections(lines: Sequence[str], name: str) -> List[Tuple[int, int]]:
    """
    Half-open [start, end) index ranges of every section whose header is
    exactly `[name]`, in file order.
    """
    runs: List[Tuple[int, int]] = []
    start: Optional[int] = None
    for i, line in enumerate(lines):
        hn = header_name(line)
        if hn is None:
            continue
        if start is not None:
            runs.append((start, i))
            start = None
        if hn == name:
            start = i
    if start is not None:
        runs.append((start, len(lines)))
    return runs


def remove_sections(lines: Sequence[str], name: str) -> Tuple[List[str], int]:
    """
    Drop every `[name]` run. Returns (kept_lines, number_of_lines_removed).
    """
    runs = find_sections(lines, name)
    if not runs:
        return list(lines), 0

    kept: List[str] = []
    cursor = 0
    removed = 0
    for start, end in runs:
        kept.extend(lines[cursor:start])
        removed += end - start
        cursor = end
    kept.extend(lines[cursor:])
    return kept, removed


def format_field(key: str, value: str) -> str:
    return f"{key:<{FIELD_KEY_WIDTH}}= {value}"


def render_section(name: str, fields: Sequence[Tuple[str, str]]) -> List[str]:
    """Header plus one `key = value` line per field, each newline-terminated."""
    out = [f"[{name}]\n"]
    out.extend(format_field(k, v) + "\n" for k, v in fields)
    return out


def separator_for(existing: str) -> str:
    """
    Text to write before an appended section so that it is preceded by
    exactly one blank line.

    An empty file still gets the blank line. A file whose last line is
    already blank gets nothing, which keeps remove+append stable across runs.
    An unterminated last line is terminated first.
    """
    if existing == "":
        return "\n"
    if not existing.endswith(("\n", "\r")):
        return "\n\n"
    last = existing.splitlines()[-1]
    if last.strip() == "":
        return ""
    return "\n"
