from typing import Optional


class EcosystemError(ValueError):
    """Base class for errors raised while loading or validating an ecosystem file."""


class EcosystemSyntaxError(EcosystemError):
    """Raised when an ecosystem file cannot be parsed."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.line = line
        self.column = column
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message)


class LaunchSpecError(EcosystemError):
    """Raised when an app entry holds invalid or inconsistent values."""
