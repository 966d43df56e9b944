"""Exception types raised by the import pipeline.

RowError subclasses are recoverable: the executor records them against the
row and applies the flow's error policy. Anything else escaping a row is
treated as fatal to the run.
"""


class RowError(Exception):
    """A problem confined to a single source row."""


class RowValidationError(RowError):
    def __init__(self, errors: dict[str, list[str]], message: str = "Row validation failed"):
        super().__init__(message)
        self.errors = errors


class DuplicateRecordError(RowError):
    """A record with the same unique key already exists."""


class UniqueConstraintError(DuplicateRecordError):
    """The entity store rejected a write that violates a unique field."""


class EntityNotFoundError(KeyError):
    """The entity store has no definition for the requested entity type."""

    def __str__(self) -> str:
        return f"Unknown entity type: {self.args[0]}" if self.args else "Unknown entity type"
