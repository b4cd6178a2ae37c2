"""Exceptions raised by entity sources and loaders."""


class MalformedQueryError(ValueError):
    """A query carried a property constraint that cannot be interpreted."""


class SourceUnavailableError(RuntimeError):
    """The storage behind a source could not be opened or reached."""


class FlatFileError(ValueError):
    """A flat intermediate file could not be parsed."""

    def __init__(self, message: str, line_number: int | None = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number
