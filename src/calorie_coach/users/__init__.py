"""
User records (read-only to the call flow).
"""

__all__: list[str] = []
