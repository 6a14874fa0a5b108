"""Errors raised while preparing or delivering a broadcast."""
from __future__ import annotations

from typing import Optional


class ValidationError(ValueError):
    """Caller supplied a malformed notification or recipient list."""


class ProviderTransportError(Exception):
    """A batch could not be handed to the push provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
