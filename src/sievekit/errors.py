"""
sievekit error types.

Fatal errors are exceptions. Validation findings are plain records
(see sievekit.tools.lint.ValidationError) because they never abort work.
"""

from typing import Optional


class SieveError(Exception):
    """Base class for all sievekit errors."""


class SieveSyntaxError(SieveError):
    """Tokenizer or parser could not make sense of the input."""

    def __init__(self, message: str, offset: int = 0, line: int = 0, column: int = 0):
        self.message = message
        self.offset = offset
        self.line = line
        self.column = column
        if line:
            super().__init__(
                f"Syntax error at line {line}, column {column} (offset {offset}): {message}"
            )
        else:
            super().__init__(f"Syntax error at offset {offset}: {message}")


class LimitExceeded(SieveError):
    """Nesting depth went past the configured bound."""

    def __init__(self, limit: int, line: int = 0, column: int = 0):
        self.limit = limit
        self.line = line
        self.column = column
        super().__init__(f"Nesting depth limit of {limit} exceeded at line {line}, column {column}")


class MutationError(SieveError):
    """A tree edit was rejected; the tree was left untouched."""

    def __init__(self, invariant: str, message: str, command: Optional[object] = None):
        self.invariant = invariant
        self.message = message
        self.command = command
        super().__init__(f"{invariant}: {message}")
