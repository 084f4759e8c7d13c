"""Cross-cutting helpers shared by every layer."""

from .logger import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
