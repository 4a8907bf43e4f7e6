# -*- coding: utf-8 -*-
"""Location: ./mcpresume/services/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0

Persistence and logging services.
"""
