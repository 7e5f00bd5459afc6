# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""Command-line entry points (odbckit-register, odbckit-build)."""
