# -*- coding: utf-8 -*-
"""Location: ./mcpresume/cache/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

In-process session bookkeeping.
"""
