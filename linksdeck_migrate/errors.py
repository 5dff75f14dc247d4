"""
Migration error taxonomy
------------------------
Every stage raises one of these on a fatal condition. A single malformed
document is never an error: the transform drops it and counts it instead.
"""


class MigrationError(Exception):
    """Base class for all pipeline failures."""


class ConfigError(MigrationError):
    """Missing or invalid configuration (raised before any stage runs)."""


class SourceAccessError(MigrationError):
    """Auth or network failure while reading the document store."""


class ArtifactIOError(MigrationError):
    """An intermediate file could not be read, parsed or written."""


class DestinationError(MigrationError):
    """Connection, constraint or transaction failure against the relational store."""


class ReconciliationMismatch(MigrationError):
    """Verification counts disagree with the transformed dataset."""

    def __init__(self, summary):
        self.summary = summary
        super().__init__(
            f"verification failed: expected={summary.expected} actual={summary.actual}"
        )
