# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""Driver preparation pipelines (Linux build, Windows packaging)."""

from .linux import LinuxDriverBuilder
from .steps import Policy, StepResult, StepRunner, StepStatus
from .windows import WindowsDriverPackager

__all__ = ["LinuxDriverBuilder", "Policy", "StepResult", "StepRunner", "StepStatus", "WindowsDriverPackager"]
