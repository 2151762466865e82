"""
Small helpers with no domain knowledge.
"""

from __future__ import annotations

import secrets


def generate_token(length: int = 32) -> str:
    """
    URL-safe random token built from ``length`` random bytes.

    Used for payment links (``/pay/<token>``), so it must be unguessable.
    """
    return secrets.token_urlsafe(length)
