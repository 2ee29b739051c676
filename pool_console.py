"""
pool_console.py

Shared rich console and logging setup for the pool-boost tools.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# ------------------------------
# Rich console setup
# ------------------------------

custom_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "title": "bold magenta",
        "highlight": "bold cyan",
        "muted": "dim",
    }
)

console = Console(theme=custom_theme)


def configure_logging(level: str = "WARNING") -> None:
    """
    Route log records through the themed console so they interleave
    cleanly with prompts and result messages.
    """
    resolved = getattr(logging, str(level).upper(), logging.WARNING)
    logging.basicConfig(
        level=resolved,
        format="%(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
