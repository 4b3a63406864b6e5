"""
Shared infrastructure: configuration-aware logging, database access,
exceptions and HTTP middleware.
"""
