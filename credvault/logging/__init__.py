"""
Logging Module
==============

Structured logging using structlog with JSON output for production
and colored console output for development.

Usage:
    from credvault.logging import get_logger, setup_logging

    # Setup at application start
    setup_logging()

    # Get logger for a module
    logger = get_logger(__name__)

    # Log with context
    logger.info("credential_created", credential_id="123", storage_type="hybrid")
    logger.warning("blob_upload_failed", error=str(e))
"""

from credvault.logging.logger import (
    bind_context,
    bound_context,
    clear_context,
    get_logger,
    setup_logging,
)


__all__ = [
    "get_logger",
    "setup_logging",
    "bind_context",
    "bound_context",
    "clear_context",
]
