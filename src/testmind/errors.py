"""Exceptions raised by TestMind."""


class TestMindError(Exception):
    """Base class for TestMind errors."""

    __test__ = False


class DiffParseError(TestMindError):
    """Unified diff text could not be parsed."""

    def __init__(self, message: str, line_number: int | None = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class LLMError(TestMindError):
    """The language model collaborator failed or returned nothing usable."""
