"""
Error Flow Tests

Covers:
- Exception taxonomy and categorization
- ErrorHandler output routing and tracking
- Coded logger formatting and level handling
- Configuration validation
"""

import logging

import pytest
from unittest.mock import MagicMock

from hypercerts.core.config import HypercertsConfig
from hypercerts.core.error_handler import (
    ErrorHandler,
    ErrorSeverity,
    ErrorCategory,
    categorize,
    RepositoryError,
    RecordNotFoundError,
    AuthError,
    NoAuthSessionError,
    MalformedReferenceError,
    BacklinkIndexError,
    BacklinkDiscoveryError,
    CascadeDeleteError,
    ConfigurationError,
    InvalidFieldError,
    HypercertsError,
)
from hypercerts.core.hc_logger import HcLogger, set_log_level, repo_logger


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def mock_console():
    """Mock Rich console for testing output."""
    console = MagicMock()
    console.print = MagicMock()
    return console


@pytest.fixture
def error_handler(mock_console):
    return ErrorHandler(console=mock_console)


# =============================================================================
# TAXONOMY
# =============================================================================

class TestTaxonomy:

    def test_not_found_is_a_repository_error(self):
        err = RecordNotFoundError("at://did:plc:x/c.o.l/1")
        assert isinstance(err, RepositoryError)
        assert err.uri == "at://did:plc:x/c.o.l/1"
        assert "record not found" in str(err)

    def test_malformed_reference_is_value_error(self):
        err = MalformedReferenceError("nope", "missing at:// prefix")
        assert isinstance(err, ValueError)
        assert isinstance(err, HypercertsError)
        assert "invalid URI" in str(err)

    def test_discovery_error_lists_failures(self):
        err = BacklinkDiscoveryError("at://root", {"evaluation": RepositoryError("502")})
        assert "evaluation: 502" in str(err)
        assert err.root_uri == "at://root"

    @pytest.mark.parametrize("error,category", [
        (AuthError("x"), ErrorCategory.AUTH),
        (NoAuthSessionError(), ErrorCategory.AUTH),
        (CascadeDeleteError("x"), ErrorCategory.CASCADE_DELETE),
        (BacklinkDiscoveryError("r", {}), ErrorCategory.CASCADE_DELETE),
        (BacklinkIndexError("x"), ErrorCategory.BACKLINK_INDEX),
        (MalformedReferenceError("x"), ErrorCategory.USER_INPUT),
        (InvalidFieldError("x"), ErrorCategory.USER_INPUT),
        (RecordNotFoundError("x"), ErrorCategory.REPOSITORY),
        (ConfigurationError(["x"]), ErrorCategory.CONFIG),
        (RuntimeError("x"), ErrorCategory.GENERAL),
    ])
    def test_categorize(self, error, category):
        assert categorize(error) == category


# =============================================================================
# ERROR HANDLER
# =============================================================================

class TestErrorHandler:

    def test_fatal_printed_as_error(self, error_handler, mock_console):
        message = error_handler.handle_error(RepositoryError("listRecords returned 502"))

        assert message == "listRecords returned 502"
        printed = mock_console.print.call_args[0][0]
        assert printed.startswith("[red]Error:[/red]")

    def test_warning_printed_as_warning(self, error_handler, mock_console):
        error_handler.handle_error(BacklinkIndexError("down"), severity=ErrorSeverity.WARNING, context="attachments")

        printed = mock_console.print.call_args[0][0]
        assert printed == "[yellow]Warning:[/yellow] attachments: down"

    def test_debug_not_printed(self, error_handler, mock_console):
        error_handler.handle_error(BacklinkIndexError("down"), severity=ErrorSeverity.DEBUG)
        mock_console.print.assert_not_called()

    def test_tracks_counts(self, error_handler):
        error_handler.handle_error(AuthError("a"))
        error_handler.handle_error(AuthError("b"))
        error_handler.handle_error(BacklinkIndexError("c"))

        summary = error_handler.get_error_summary()
        assert summary["total_errors"] == 3
        assert summary["by_category"] == {"auth": 2, "backlink_index": 1}
        assert summary["last_error"]["error_type"] == "BacklinkIndexError"

    def test_without_console(self):
        handler = ErrorHandler()
        assert handler.handle_error(AuthError("quiet")) == "quiet"

    def test_operation_shown_in_debug_mode(self, mock_console):
        handler = ErrorHandler(console=mock_console, debug_mode=True)
        assert handler.handle_error(AuthError("x"), operation="activity") == "[activity] x"


# =============================================================================
# LOGGER
# =============================================================================

class TestLogger:

    def test_coded_message_with_context(self, caplog):
        log = HcLogger("hc_test_logger", level="DEBUG")
        with caplog.at_level(logging.DEBUG, logger="hc_test_logger"):
            log.log_info("CASCADE_DONE", "at://x", {"warnings": 1})
        assert "CASCADE_DONE: at://x (warnings=1)" in caplog.text

    def test_unknown_level_falls_back_to_warning(self):
        log = HcLogger("hc_test_level", level="chatty")
        assert log.logger.level == logging.WARNING

    def test_set_log_level(self):
        previous = repo_logger.logger.level
        try:
            set_log_level("debug")
            assert repo_logger.logger.level == logging.DEBUG
            set_log_level("warn")
            assert repo_logger.logger.level == logging.WARNING
        finally:
            repo_logger.logger.setLevel(previous)


# =============================================================================
# CONFIG
# =============================================================================

class TestConfiguration:

    def test_defaults_validate(self):
        assert HypercertsConfig.validate_config() == []

    def test_bad_values_reported(self):
        class Broken(HypercertsConfig):
            PLC_HOST = "plc.directory"
            LIST_PAGE_LIMIT = 500
            DISCOVERY_WORKERS = 0
            LOG_LEVEL = "LOUD"

        issues = Broken.validate_config()
        assert "PLC_HOST must be an http(s) URL" in issues
        assert "LIST_PAGE_LIMIT must be between 1 and 100" in issues
        assert "DISCOVERY_WORKERS must be at least 1" in issues
        assert "Unknown LOG_LEVEL: LOUD" in issues

    def test_configuration_error_joins_issues(self):
        err = ConfigurationError(["PLC_HOST must be an http(s) URL", "DISCOVERY_WORKERS must be at least 1"])
        assert str(err) == ("invalid configuration: PLC_HOST must be an http(s) URL; "
                            "DISCOVERY_WORKERS must be at least 1")
        assert len(err.issues) == 2

    def test_network_config(self):
        cfg = HypercertsConfig.get_network_config()
        assert cfg["page_limits"]["backlinks"] == HypercertsConfig.BACKLINK_PAGE_LIMIT
