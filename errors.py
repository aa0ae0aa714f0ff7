class LedgerError(ValueError):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    status_code = 400


class AuthError(LedgerError):
    """Missing credentials map to 401, rejected credentials to 403."""

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(LedgerError):
    status_code = 404


class StoreError(LedgerError):
    status_code = 500
