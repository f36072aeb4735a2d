"""Error taxonomy shared by the core and mapped to HTTP responses in ``main``.

Each class carries a ``status_code`` and a caller-safe ``detail``. Anything
operators need beyond that goes to the log, never into ``detail``.
"""


class QRHubError(Exception):
    status_code = 500
    detail = "Server error"

    def __init__(self, detail: str | None = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class InvalidFormat(QRHubError):
    status_code = 400
    detail = "Invalid format"


class ValidationFailed(QRHubError):
    """Collected field errors from a rule chain."""

    status_code = 400
    detail = "Validation failed"

    def __init__(self, errors: list[dict]):
        self.errors = errors
        super().__init__()


class Conflict(QRHubError):
    status_code = 409
    detail = "Already taken"


class NotFound(QRHubError):
    status_code = 404
    detail = "Not found"


class BlockedRedirect(QRHubError):
    status_code = 403
    detail = "Redirect blocked for security reasons"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__()


class AllocatorExhausted(QRHubError):
    status_code = 503
    detail = "Could not allocate a code, please try again"


class StorageUnavailable(QRHubError):
    status_code = 500
    detail = "Server error"
