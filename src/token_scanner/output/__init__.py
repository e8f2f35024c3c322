"""Console and file output."""

from .logger import TokenFormatter, TokenLogger, setup_app_logging

__all__ = ["TokenFormatter", "TokenLogger", "setup_app_logging"]
