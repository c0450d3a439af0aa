"""
Command-line runner for maps-scrape-bot.

- logging_setup: console and rotating-file logging for module loggers
- main: `maps-scrape-bot` entry point (input file, watchdog, export)
"""

from runner.logging_setup import get_logger, setup_logging

__version__ = "0.1.0"

__all__ = ["get_logger", "setup_logging"]
