"""Shared utilities for scopeguard."""

from scopeguard.common.logger import setup_logger, get_logger

__all__ = ["setup_logger", "get_logger"]
