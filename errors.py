"""
Error types shared by the managers and the HTTP layer.

Each error carries the HTTP status it maps to, so routes never translate
exceptions by hand: the Flask error handler renders ``to_dict()``.
"""

class RecordVaultError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: Human-readable error message
        error_code: Short code for categorization
        details: Additional context, safe to return to the caller
    """

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message, error_code=None, details=None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}

    def to_dict(self):
        body = {"error": self.message, "code": self.error_code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(RecordVaultError):
    """Missing or malformed input. Raised before any side effect."""

    status_code = 400
    default_code = "VALIDATION_ERROR"

    def __init__(self, message, field=None):
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class AuthenticationError(RecordVaultError):
    """Credentials or session artifact missing, invalid or expired."""

    status_code = 401
    default_code = "AUTHENTICATION_REQUIRED"


class NotFoundOrForbidden(RecordVaultError):
    """
    The resource does not exist or belongs to another account.

    The message never says which, so callers cannot discover ids owned
    by other accounts.
    """

    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource="resource", resource_id=None):
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(RecordVaultError):
    """Uniqueness violation (duplicate header name, duplicate email, ...)."""

    status_code = 409
    default_code = "CONFLICT"


class UpstreamStoreError(RecordVaultError):
    """The datastore or blob store failed; the operation was aborted."""

    status_code = 502
    default_code = "UPSTREAM_STORE_ERROR"

    def __init__(self, store, message):
        super().__init__(f"{store} failure: {message}", details={"store": store})
        self.store = store

    def to_dict(self):
        # Driver messages may include SQL or bucket names
        return {"error": f"{self.store} unavailable", "code": self.error_code}
