"""
Error types shared across the decision core.

Exchange failures are not exceptions here: adapters return None and the
calling strategy skips the cycle.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """A required tunable is missing or out of range."""


class InvalidInput(ValueError):
    """Analytics precondition violated (e.g. non-positive smart price)."""
