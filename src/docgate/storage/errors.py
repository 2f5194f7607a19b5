"""
Gateway error taxonomy.

Every error carries the HTTP status the API layer answers with.
"""


class GatewayError(Exception):
    """Base class for errors surfaced to gateway callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GatewayError):
    """Empty or mismatched identifier, or a malformed request body."""

    status_code = 400


class NotFoundError(GatewayError):
    """The addressed document does not exist."""

    status_code = 404


class InvalidQueryError(GatewayError):
    """The backend rejected the constructed query as malformed."""

    status_code = 400


class CapabilityNotSupportedError(GatewayError, NotImplementedError):
    """The active backend does not implement the requested operation."""

    status_code = 501


class BackendError(GatewayError):
    """Any other backend failure, including connectivity loss and bad responses."""

    status_code = 500
