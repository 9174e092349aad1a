# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/cli/__init__.py

"""Command Line Interface package for GreyCrypt."""

from .main import main, app

__all__ = ['main', 'app']
