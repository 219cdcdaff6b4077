"""
Custom exceptions for synlauncher.

This module defines domain-specific exceptions that let callers tell apart
network failures, HTTP failures, rate limiting, archive problems and local
filesystem problems without parsing error messages.
"""


class SynLauncherError(Exception):
    """
    Base exception for all synlauncher errors.

    All custom exceptions in synlauncher inherit from this class
    to allow for easy catching of all application-specific errors.
    """

    def __init__(self, message: str, details: str | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: The primary error message.
            details: Optional additional context about the error.
        """
        self.message = message
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(SynLauncherError):
    """
    Exception raised when configuration is invalid or missing.

    This includes:
    - Missing client directory
    - Missing catalog URL
    - Invalid option values
    """

    pass


class ConfigFileError(ConfigurationError):
    """Exception raised when the settings or options file cannot be read or written."""

    pass


class CatalogError(SynLauncherError):
    """Exception raised when the curated addon catalog cannot be fetched or parsed."""

    pass


# =============================================================================
# Download Errors
# =============================================================================


class DownloadError(SynLauncherError):
    """
    Base exception for transfer-related errors.

    Attributes:
        url: The URL that was being requested when the error occurred.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        details: str | None = None,
    ) -> None:
        """
        Initialize the download exception.

        Args:
            message: The primary error message.
            url: The URL that was being requested.
            details: Optional additional context.
        """
        super().__init__(message, details)
        self.url = url


class NetworkError(DownloadError):
    """
    Exception raised for connection-level failures.

    This includes:
    - DNS resolution failures
    - Connection refused or reset
    - SSL/TLS errors
    """

    pass


class DownloadCancelledError(DownloadError):
    """Exception raised when a transfer is cancelled before it completes."""

    pass


class RedirectBudgetExceededError(DownloadError):
    """
    Exception raised when a redirect chain is longer than the allowed hop budget.

    Attributes:
        max_redirects: The budget that was exhausted.
    """

    def __init__(self, url: str, max_redirects: int) -> None:
        super().__init__(
            f"Too many redirects (limit {max_redirects})",
            url=url,
        )
        self.max_redirects = max_redirects


class HTTPError(DownloadError):
    """
    Exception raised for terminal non-success HTTP responses.

    Attributes:
        status_code: The HTTP status code returned by the server.
        body: The response body, kept for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        body: str | None = None,
        details: str | None = None,
    ) -> None:
        """
        Initialize the HTTP exception.

        Args:
            message: The primary error message.
            status_code: The HTTP status code.
            url: The URL that was requested.
            body: The response body text.
            details: Optional additional context.
        """
        super().__init__(message, url, details)
        self.status_code = status_code
        self.body = body


class RateLimitError(HTTPError):
    """
    Exception raised when GitHub answers 403 or 429.

    Kept distinct from other HTTP failures so callers can tell the user
    to configure a token instead of reporting a broken repository.
    """

    def __init__(
        self,
        message: str = "GitHub API rate limit exceeded",
        status_code: int = 403,
        url: str | None = None,
        body: str | None = None,
        reset_time: int | None = None,
    ) -> None:
        super().__init__(
            message,
            status_code=status_code,
            url=url,
            body=body,
            details=f"Resets at: {reset_time}" if reset_time else None,
        )
        self.reset_time = reset_time


# =============================================================================
# API Errors
# =============================================================================


class APIError(SynLauncherError):
    """
    Exception raised for unexpected API payloads.

    Attributes:
        endpoint: The API endpoint that was accessed.
    """

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.endpoint = endpoint


class ResourceNotFoundError(APIError):
    """Exception raised when a repository or its commit history cannot be found."""

    pass


# =============================================================================
# File System Errors
# =============================================================================


class FileSystemError(SynLauncherError):
    """
    Exception raised when creating, moving or deleting local files fails.

    Attributes:
        path: The file path that caused the error.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.path = path


# =============================================================================
# Archive Errors
# =============================================================================


class ArchiveError(SynLauncherError):
    """
    Exception raised for archive-related errors.

    Attributes:
        archive_path: Path to the problematic archive.
    """

    def __init__(
        self,
        message: str,
        archive_path: str | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message, details)
        self.archive_path = archive_path


class CorruptedArchiveError(ArchiveError):
    """Exception raised when an archive is corrupted or not a zip file."""

    pass


class NoQualifyingContentError(ArchiveError):
    """Exception raised when an addon archive contains no descriptor-marked folder."""

    pass


# =============================================================================
# Install State Errors
# =============================================================================


class NotInstalledError(SynLauncherError):
    """
    Exception raised when an operation needs an installed record that does not exist.

    Attributes:
        name: The addon name that was requested.
    """

    def __init__(self, name: str) -> None:
        super().__init__(f"Addon '{name}' is not installed")
        self.name = name
