"""CLI package for trendline.

This module provides the `trendline` command-line interface. All commands
delegate to the Workspace facade or ConfigManager, adding only I/O
formatting.
"""

from trendline.cli.main import app

__all__ = ["app"]
