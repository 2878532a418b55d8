"""Typed exceptions for application registration.

Every failure that aborts an invocation derives from AppRegistrationError.
Cancellation by the operator is not an error and has no exception type.
"""


class AppRegistrationError(Exception):
    """Base exception for all registration operations."""
    pass


class InputValidationError(AppRegistrationError):
    """Caller input rejected before any network call.

    Attributes:
        parameter: Name of the offending parameter
    """

    def __init__(self, message: str, parameter: str = ""):
        self.parameter = parameter
        super().__init__(message)


class MissingCredentialError(InputValidationError):
    """Username or password missing for the password flow."""
    pass


class InvalidScopeError(InputValidationError):
    """Scope identifier not present in the permission table."""
    pass


class CertificateNotFoundError(InputValidationError):
    """No file exists at the given certificate path."""
    pass


class CryptographicFailureError(AppRegistrationError):
    """Certificate material could not be decrypted or parsed."""

    def __init__(self, message: str, parameter: str = "CertificatePassword"):
        self.parameter = parameter
        super().__init__(message)


class IncorrectPasswordError(CryptographicFailureError):
    """A certificate password was supplied but does not open the file."""
    pass


class PasswordRequiredError(CryptographicFailureError):
    """The certificate file is protected and no password was supplied."""
    pass


class NoPrivateKeyError(AppRegistrationError):
    """Imported certificate does not hold a private key."""

    def __init__(self, message: str, parameter: str = "CertificatePath"):
        self.parameter = parameter
        super().__init__(message)


class NetworkFailureError(AppRegistrationError):
    """Identity endpoint or directory service call failed."""
    pass


class TokenAcquisitionError(NetworkFailureError):
    """Token endpoint refused or failed the exchange."""
    pass


class GraphAPIError(NetworkFailureError):
    """HTTP error from the directory service.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")
