class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Missing or malformed request fields; raised before any side effect."""
    status_code = 400


class AuthError(AppError):
    status_code = 401


class DuplicateUserError(AuthError):
    status_code = 400


class ConfigurationError(AppError):
    """Deployment configuration is missing or invalid."""


class StorageError(AppError):
    """The blob store or the relational store call failed."""
