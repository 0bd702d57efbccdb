"""
Exception types for the OMERO question-type plugins.

Migration errors are raised where a problem is detected and caught only at
the version-step boundary of the upgrade runner, which rolls back the
step's transaction, logs the message and reports failure.
"""


class MigrationError(Exception):
    """Base class for errors raised while upgrading a plugin table."""

    def __init__(self, message, version=None, table=None):
        super().__init__(message)
        self.version = version
        self.table = table


class UnparsableReference(MigrationError):
    """A stored image URL has no numeric image id to extract."""

    def __init__(self, url, row_id=None, **kwargs):
        super().__init__(f"Unable to detect the image_id in {url!r} (row {row_id})", **kwargs)
        self.url = url
        self.row_id = row_id


class ColumnAlreadyExists(MigrationError):
    """Raised by the raw column-add primitive; the existence guard treats it as benign."""

    def __init__(self, table, column):
        super().__init__(f"Column {column!r} already exists on {table!r}", table=table)
        self.column = column


class PersistFailure(MigrationError):
    """A row update was rejected by the storage layer."""

    def __init__(self, row_id, reason="", **kwargs):
        message = f"Error during question update: {row_id}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, **kwargs)
        self.row_id = row_id


class QuestionError(Exception):
    """Raised by question CRUD helpers for unknown types or missing questions."""
