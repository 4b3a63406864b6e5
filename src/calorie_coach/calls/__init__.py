"""
Call logs: model, record store and lifecycle transitions.

Models are imported by submodules only, so importing the package does not
configure ORM mappers.
"""

__all__: list[str] = []
