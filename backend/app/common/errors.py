"""
Errors shared across modules.
"""


class PersistenceError(Exception):
    """Raised when a backing store cannot be written or read."""
