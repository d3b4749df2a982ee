"""Shared utilities for lifestory."""

from lifestory.utils.logging import LogContext, RedactingFilter, setup_logging

__all__ = ["LogContext", "RedactingFilter", "setup_logging"]
