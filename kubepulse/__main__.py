"""Entry point for `python -m kubepulse`.

Usage:
    python -m kubepulse status
    python -m kubepulse events my-context --type Warning --since 6h
"""

from __future__ import annotations

from kubepulse.cli import cli

cli()
