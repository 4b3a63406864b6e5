"""
Telephony package.

Keep package import side-effects to a minimum to avoid circular imports.
"""

__all__ = [
    "config",
    "responses",
    "security",
]
