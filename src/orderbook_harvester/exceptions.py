"""Exception hierarchy for the order book harvester."""


class HarvesterError(Exception):
    """Base exception for all harvester errors."""

    pass


class ConfigurationError(HarvesterError):
    """Exception raised for invalid or missing configuration."""

    pass


class NoCredentialsError(ConfigurationError):
    """Raised when no usable API credential is left to start the harvest."""

    pass


class FetchError(HarvesterError):
    """Exception raised when a page of order book data cannot be fetched."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class RateLimitError(FetchError):
    """The upstream API rejected the request because of quota or rate limits."""

    pass


class AuthenticationError(FetchError):
    """The upstream API rejected the credential."""

    pass


class UpstreamError(FetchError):
    """The upstream API answered with an error or an unreadable payload."""

    pass


class NetworkError(FetchError):
    """The upstream API could not be reached."""

    pass


class PersistenceError(HarvesterError):
    """Exception raised when the storage layer fails to read or write."""

    pass


class CursorResolutionError(HarvesterError):
    """Exception raised when the resume point of a symbol cannot be determined."""

    pass


class CredentialPoolError(HarvesterError):
    """Exception raised when the credential pool protocol is violated."""

    pass
