# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/build/download.py

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import requests
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from ..core.exceptions import DownloadError

LOG = logging.getLogger(__name__)

CHUNK_BYTES = 1024 * 1024


def _progress() -> Progress:
    return Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        disable=not sys.stderr.isatty(),
    )


def fetch(
    url: str,
    dest: Path,
    *,
    logger: Optional[logging.Logger] = None,
    connect_timeout_s: int = 30,
    read_timeout_s: int = 300,
    session: Optional[requests.Session] = None,
) -> Path:
    """
    Download `url` to `dest` unless `dest` already exists.

    Data goes to `<dest>.part` first and is renamed on completion, so an
    interrupted download never leaves a truncated archive under the final name.
    """
    log = logger or LOG
    dest = Path(dest)
    if dest.exists():
        log.info("Using cached %s", dest)
        return dest

    dest.parent.mkdir(parents=True, exist_ok=True)
    temp = dest.parent / f"{dest.name}.part"
    http = session or requests

    log.info("Downloading %s to %s", url, dest)
    try:
        with http.get(url, stream=True, timeout=(connect_timeout_s, read_timeout_s), allow_redirects=True) as resp:
            resp.raise_for_status()
            length = resp.headers.get("Content-Length")
            total = int(length) if length and length.isdigit() else None

            written = 0
            with _progress() as progress, open(temp, "wb") as f:
                task = progress.add_task(f"Downloading {dest.name}", total=total)
                for chunk in resp.iter_content(chunk_size=CHUNK_BYTES):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
                        progress.update(task, completed=written)

        if total is not None and written != total:
            raise DownloadError(msg=f"Size mismatch for {url}: expected {total}, got {written}")

        temp.replace(dest)
    except (requests.RequestException, OSError) as e:
        temp.unlink(missing_ok=True)
        raise DownloadError(msg=f"Failed to download {url}: {e}", cause=e, context={"dest": str(dest)}) from e
    except DownloadError:
        temp.unlink(missing_ok=True)
        raise

    log.debug("Downloaded %d bytes to %s", written, dest)
    return dest
