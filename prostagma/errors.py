"""Error hierarchy for prostagma.

Store and fetch code raise these instead of bare exceptions so that the
server's single error handler can map them to the right HTTP status code.
"""


class ProstagmaError(Exception):
    """Base for all domain exceptions."""

    def __init__(self, message: str = "An unexpected error occurred", *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class BadRequestError(ProstagmaError):
    """Malformed or incomplete request body (400)."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(message, status_code=400)


class ForbiddenError(ProstagmaError):
    """Shared secret did not match (403)."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, status_code=403)


class NotFoundError(ProstagmaError):
    """Uncached URL, or the remote refused to hand over the file (404)."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message, status_code=404)


class InternalError(ProstagmaError):
    """Local I/O failure while creating or writing a cache file (500)."""

    def __init__(self, message: str = "Internal error"):
        super().__init__(message, status_code=500)


# ── Agent side ────────────────────────────────────────────────────────────

class CoordinatorRequestError(ProstagmaError):
    """A call to the coordinator failed in transport or returned non-200.

    ``status_code`` is None when no HTTP response was received.
    """

    def __init__(self, message: str, *, status_code=None):
        super().__init__(message, status_code=status_code)


class ScriptError(ProstagmaError):
    """A build script could not be loaded or one of its steps failed."""


class UnknownStepError(ScriptError):
    """A build step whose key is not one of the known step kinds."""
