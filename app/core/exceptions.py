"""Custom application exceptions."""


class AppException(Exception):
    """Base application exception."""

    code = "internal_error"

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(AppException):
    """Resource not found exception."""

    code = "not_found"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    code = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ForbiddenException(AppException):
    """Forbidden access exception."""

    code = "forbidden"

    def __init__(self, message: str = "Forbidden"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestException(AppException):
    """Bad request exception."""

    code = "invalid_request"

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class ConflictException(AppException):
    """Conflict exception."""

    code = "conflict"

    def __init__(self, message: str = "Conflict"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class RateLimitException(AppException):
    """Rate limit exceeded exception."""

    code = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded"):
        """Initialize with 429 status code."""
        super().__init__(message, status_code=429)


class PersistenceException(AppException):
    """The store rejected or failed a write."""

    code = "persistence_error"

    def __init__(self, message: str = "Could not save the request, please retry"):
        """Initialize with 500 status code."""
        super().__init__(message, status_code=500)


class ConfigurationException(AppException):
    """A required external integration is not configured."""

    code = "configuration_error"

    def __init__(self, message: str = "Payment service is not available"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)


class GatewayException(AppException):
    """The payment gateway could not be reached or answered badly."""

    code = "gateway_error"

    def __init__(self, message: str = "Payment gateway unavailable"):
        """Initialize with 502 status code."""
        super().__init__(message, status_code=502)
