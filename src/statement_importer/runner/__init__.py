"""
CLI runner module.

Provides commands:
- init: Config, database, default chart and bank account
- import: Import a statement file
- review: List transactions pending review
- accept / reject: Review decisions
- status: Statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
