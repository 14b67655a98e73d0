"""
Presentation layer - operator CLI.
"""

from .cli.main import run_cli

__all__ = ["run_cli"]
