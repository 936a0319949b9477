"""Exception hierarchy shared by the lifecycle manager, gateway and web layer."""


class ViaCargoError(Exception):
    """Base class for every error this application raises on purpose."""


class ValidationError(ViaCargoError):
    """Raised before any backend call when a draft cannot be submitted."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class GatewayError(ViaCargoError):
    """A persistence backend call failed (network, auth or database)."""

    def __init__(self, operation: str, message: str = ""):
        super().__init__(f"{operation} failed: {message}" if message else f"{operation} failed")
        self.operation = operation


class AuthenticationError(GatewayError):
    def __init__(self, operation: str):
        super().__init__(operation, "not authenticated")


class NotFoundError(GatewayError):
    def __init__(self, operation: str, key: str):
        super().__init__(operation, f"{key} not found")
        self.key = key
