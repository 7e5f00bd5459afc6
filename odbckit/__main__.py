# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
from .cli.register import main

if __name__ == "__main__":
    main()
