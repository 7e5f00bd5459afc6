# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# odbckit/config/config_loader.py
from __future__ import annotations

import argparse
import glob
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..core.exceptions import Fatal


def _deep_merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in over.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


class Config:
    """
    YAML/JSON build configuration files.

    JSON is valid YAML, so `config.json` from older setups loads unchanged.
    Later files win over earlier ones; nested mappings are merged key by key.
    """

    @staticmethod
    def expand_configs(logger: logging.Logger, cfgs: List[str]) -> List[Path]:
        out: List[Path] = []
        for raw in cfgs:
            pattern = os.path.expanduser(str(raw))
            hits = sorted(glob.glob(pattern)) if glob.has_magic(pattern) else [pattern]
            if not hits:
                logger.warning("Config glob matched nothing: %s", raw)
            out.extend(Path(h) for h in hits)
        return out

    @staticmethod
    def load_file(logger: logging.Logger, path: Path) -> Dict[str, Any]:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise Fatal(2, f"Cannot read {path}: {e.strerror or e}") from e
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise Fatal(2, f"Invalid YAML/JSON in {path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise Fatal(2, f"Config {path} must be a mapping at top level")
        logger.debug("Loaded config %s (%d keys)", path, len(data))
        return data

    @staticmethod
    def load_many(logger: logging.Logger, paths: List[Path]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for p in paths:
            merged = _deep_merge(merged, Config.load_file(logger, p))
        return merged

    @staticmethod
    def apply_as_defaults(logger: logging.Logger, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        """Top-level config keys that match an argparse dest become its default."""
        dests = {a.dest for a in parser._actions}
        defaults = {k: v for k, v in conf.items() if k in dests and not isinstance(v, dict)}
        if defaults:
            logger.debug("Config defaults: %s", sorted(defaults))
            parser.set_defaults(**defaults)
