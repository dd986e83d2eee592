"""Exceptions shared across the application."""

# PostgREST code for "JSON object requested, multiple (or no) rows returned"
NO_ROWS_CODE = "PGRST116"


class BackendError(Exception):
    """A call to the backend failed (network, auth, permission, or data)."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    @property
    def is_no_rows(self) -> bool:
        return self.code == NO_ROWS_CODE

    def __str__(self) -> str:
        return self.message


class UploadError(BackendError):
    """Uploading a file to storage failed."""


class ValidationError(Exception):
    """User input was rejected before reaching the backend."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors
