"""Command-line interface for issueradar.

This module provides the CLI for parsing repository URLs, listing issues and
generating digests.
"""

from .main import main

__all__ = ["main"]
