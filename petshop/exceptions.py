class CommerceError(Exception):
    """Base class for failures raised by the cart and order core."""

    status = 400

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotFound(CommerceError):
    status = 404


class ValidationError(CommerceError):
    status = 400


class Conflict(CommerceError):
    """Insufficient stock, unavailable product or a lost concurrent race."""

    status = 409


class StateError(CommerceError):
    status = 409


class TransientStorageError(CommerceError):
    """Persistence failed mid-transaction. Always raised after rollback."""

    status = 503


class StorageTimeout(TransientStorageError):
    pass


__all__ = [
    "CommerceError",
    "NotFound",
    "ValidationError",
    "Conflict",
    "StateError",
    "TransientStorageError",
    "StorageTimeout",
]
