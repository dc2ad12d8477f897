from typing import Optional


class ValidationError(ValueError):
    """Malformed or conflicting user input."""


class ConflictError(ValidationError):
    """Input collides with existing state (duplicate name, shared category)."""


class NotFoundError(ValueError):
    pass


class NetworkError(RuntimeError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ParseError(ValueError):
    """A cached preference entry could not be read back."""
