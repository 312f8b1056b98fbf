"""Utility functions and helpers."""

from .exceptions import (
    raise_conflict,
    raise_internal_error,
    raise_not_found,
    raise_unprocessable,
)

__all__ = [
    "raise_conflict",
    "raise_internal_error",
    "raise_not_found",
    "raise_unprocessable",
]
