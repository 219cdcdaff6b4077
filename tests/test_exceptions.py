"""
Tests for the synlauncher exceptions module.

Tests the custom exception hierarchy including:
- Base SynLauncherError and error message formatting
- Configuration and catalog errors
- Transfer errors (NetworkError, HTTPError, RateLimitError, RedirectBudgetExceededError)
- API, filesystem, archive and install state errors
"""

import pytest

from synlauncher.exceptions import (
    APIError,
    ArchiveError,
    CatalogError,
    ConfigFileError,
    ConfigurationError,
    CorruptedArchiveError,
    DownloadCancelledError,
    DownloadError,
    FileSystemError,
    HTTPError,
    NetworkError,
    NoQualifyingContentError,
    NotInstalledError,
    RateLimitError,
    RedirectBudgetExceededError,
    ResourceNotFoundError,
    SynLauncherError,
)

pytestmark = [pytest.mark.unit]


class TestSynLauncherError:
    """Test base SynLauncherError exception."""

    def test_basic_message(self):
        error = SynLauncherError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details is None

    def test_message_with_details(self):
        error = SynLauncherError("Operation failed", details="Connection timeout")
        assert str(error) == "Operation failed - Connection timeout"
        assert error.details == "Connection timeout"

    def test_can_be_caught_as_exception(self):
        with pytest.raises(Exception):
            raise SynLauncherError("boom")


class TestHierarchy:
    """Every error is catchable through its category base and SynLauncherError."""

    @pytest.mark.parametrize(
        "error, bases",
        [
            (ConfigFileError("x"), (ConfigurationError,)),
            (CatalogError("x"), ()),
            (NetworkError("x"), (DownloadError,)),
            (DownloadCancelledError("x"), (DownloadError,)),
            (RedirectBudgetExceededError("u", 3), (DownloadError,)),
            (HTTPError("x"), (DownloadError,)),
            (RateLimitError(), (HTTPError, DownloadError)),
            (ResourceNotFoundError("x"), (APIError,)),
            (CorruptedArchiveError("x"), (ArchiveError,)),
            (NoQualifyingContentError("x"), (ArchiveError,)),
            (FileSystemError("x"), ()),
            (NotInstalledError("Questie"), ()),
        ],
    )
    def test_bases(self, error, bases):
        assert isinstance(error, SynLauncherError)
        for base in bases:
            assert isinstance(error, base)

    def test_archive_errors_are_not_download_errors(self):
        assert not isinstance(NoQualifyingContentError("x"), DownloadError)


class TestDownloadErrors:
    def test_download_error_url(self):
        error = DownloadError("failed", url="https://example.com/a.zip")
        assert error.url == "https://example.com/a.zip"

    def test_http_error_attributes(self):
        error = HTTPError(
            "HTTP error 404", status_code=404, url="https://x/a.zip", body="Not Found"
        )
        assert error.status_code == 404
        assert error.body == "Not Found"
        assert error.url == "https://x/a.zip"
        assert str(error) == "HTTP error 404"

    def test_rate_limit_defaults(self):
        error = RateLimitError()
        assert error.status_code == 403
        assert error.reset_time is None
        assert str(error) == "GitHub API rate limit exceeded"

    def test_rate_limit_reset_time_in_details(self):
        error = RateLimitError(status_code=429, reset_time=1700000000)
        assert error.status_code == 429
        assert "1700000000" in str(error)

    def test_redirect_budget(self):
        error = RedirectBudgetExceededError("https://x/a.zip", 3)
        assert error.max_redirects == 3
        assert error.url == "https://x/a.zip"
        assert "3" in str(error)


class TestOtherErrors:
    def test_api_error_endpoint(self):
        error = APIError("bad payload", endpoint="https://api.github.com/repos/a/b")
        assert error.endpoint == "https://api.github.com/repos/a/b"

    def test_filesystem_error_path(self):
        error = FileSystemError("cannot write", path="/tmp/x", details="EACCES")
        assert error.path == "/tmp/x"
        assert str(error) == "cannot write - EACCES"

    def test_archive_error_path(self):
        error = CorruptedArchiveError("bad zip", archive_path="/tmp/a.zip")
        assert error.archive_path == "/tmp/a.zip"

    def test_not_installed(self):
        error = NotInstalledError("Questie")
        assert error.name == "Questie"
        assert str(error) == "Addon 'Questie' is not installed"
