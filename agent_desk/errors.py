class DeskError(Exception):
    """Base error for the support desk core."""


class MissingIdentifierError(DeskError, ValueError):
    """Raised when an operation is called without the identifier it needs."""

    def __init__(self, operation: str, field: str = "id"):
        self.operation = operation
        self.field = field
        super().__init__(f"{operation} requires a non-empty {field}")
