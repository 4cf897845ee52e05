"""
Store-level error taxonomy. Handlers in app.py translate these to HTTP responses.
"""


class StoreError(Exception):
    """Any failure reported by the data store."""

    status_code = 500


class ConflictError(StoreError):
    """A unique constraint (natural key) was violated."""

    status_code = 409


class NotFoundError(StoreError):
    """A referenced row does not exist."""

    status_code = 404
