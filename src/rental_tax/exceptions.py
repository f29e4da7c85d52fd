"""Custom exceptions for RentalTax."""


class RentalTaxError(Exception):
    """Base exception for all RentalTax errors."""

    pass


class ConfigurationError(RentalTaxError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(RentalTaxError):
    """Raised when user input is rejected before it reaches the tax engine."""

    pass


class AuthError(RentalTaxError):
    """Base class for authentication errors."""

    pass


class AuthExpiredError(AuthError):
    """Raised when the access token is past its expiry or rejected as unauthenticated."""

    pass


class AuthFailedError(AuthError):
    """Raised when sign-in is rejected, cancelled or returns no token."""

    pass


class APIError(RentalTaxError):
    """Base class for API-related errors."""

    pass


class RemoteUnavailableError(APIError):
    """Raised when a spreadsheet read or write fails for a non-auth reason."""

    pass


class MalformedRowError(RentalTaxError):
    """Raised when a spreadsheet row has an unparsable date or number."""

    def __init__(self, sheet: str, row_index: int, reason: str):
        self.sheet = sheet
        self.row_index = row_index
        super().__init__(f"Malformed row {row_index} in '{sheet}': {reason}")
