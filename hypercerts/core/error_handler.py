#!/usr/bin/env python3
"""
ErrorHandler - Error taxonomy and centralized reporting for hc
Exceptions raised by the repository client, link index and cascade engine,
plus the handler that turns them into one readable line for the operator
"""

import logging
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from rich.markup import escape


# ===== Exceptions =====

class HypercertsError(Exception):
    """Base class for every error hc raises on purpose"""
    pass


class RepositoryError(HypercertsError):
    """Repository (PDS) call failed for infrastructure reasons"""

    def __init__(self, message: str, status_code: Optional[int] = None, error_name: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.error_name = error_name


class RecordNotFoundError(RepositoryError):
    """The record named by a direct get/delete does not exist"""

    def __init__(self, uri: str, message: str = ""):
        super().__init__(message or f"record not found: {uri}", status_code=400, error_name="RecordNotFound")
        self.uri = uri


class ConcurrencyConflictError(RepositoryError):
    """A put supplied a CID that no longer matches the stored revision"""
    pass


class AuthError(RepositoryError):
    """Authentication failed or the session could not be refreshed"""
    pass


class NoAuthSessionError(HypercertsError):
    """No saved auth session and no credentials supplied"""

    def __init__(self):
        super().__init__("not logged in (run: hc account login)")


class MalformedReferenceError(HypercertsError, ValueError):
    """A string that should be a Record URI could not be parsed"""

    def __init__(self, value: str, reason: str = ""):
        detail = f" ({reason})" if reason else ""
        super().__init__(f"invalid URI: {value!r}{detail}")
        self.value = value


class BacklinkIndexError(HypercertsError):
    """Remote link-index query failed"""
    pass


class BacklinkDiscoveryError(HypercertsError):
    """One or more dependent scans failed, so the dependent set is unknown"""

    def __init__(self, root_uri: str, failures: Dict[str, Exception]):
        labels = ", ".join(f"{label}: {err}" for label, err in failures.items())
        super().__init__(f"could not determine linked records for {root_uri} ({labels})")
        self.root_uri = root_uri
        self.failures = failures


class CascadeDeleteError(HypercertsError):
    """The root record itself could not be deleted"""

    def __init__(self, message: str, report=None):
        super().__init__(message)
        self.report = report


class ConfigurationError(HypercertsError):
    """Settings from the environment failed validation"""

    def __init__(self, issues: List[str]):
        super().__init__("invalid configuration: " + "; ".join(issues))
        self.issues = issues


class InvalidFieldError(HypercertsError, ValueError):
    """A create/edit flag value was rejected before anything was written"""
    pass


# ===== Classification =====

class ErrorSeverity(Enum):
    """Error severity levels with clear action mappings"""
    FATAL = "fatal"             # Command fails, exit non-zero
    WARNING = "warning"         # Reported, command continues
    DEBUG = "debug"             # Logged only


class ErrorCategory(Enum):
    """Where in hc the error came from"""
    AUTH = "auth"                       # Login, session load/refresh
    REPOSITORY = "repository"           # PDS record operations
    BACKLINK_INDEX = "backlink_index"   # Local scans and Constellation queries
    CASCADE_DELETE = "cascade_delete"   # Dependent and root deletion
    LINK_CONTEXT = "link_context"       # activity get assembly
    USER_INPUT = "user_input"           # Bad ids, URIs, arguments, field values
    CONFIG = "config"                   # Environment settings
    GENERAL = "general"


def categorize(error: Exception) -> ErrorCategory:
    """Best-effort category for an exception that reached the top level"""
    if isinstance(error, (AuthError, NoAuthSessionError)):
        return ErrorCategory.AUTH
    if isinstance(error, (BacklinkDiscoveryError, CascadeDeleteError)):
        return ErrorCategory.CASCADE_DELETE
    if isinstance(error, BacklinkIndexError):
        return ErrorCategory.BACKLINK_INDEX
    if isinstance(error, (MalformedReferenceError, InvalidFieldError)):
        return ErrorCategory.USER_INPUT
    if isinstance(error, RepositoryError):
        return ErrorCategory.REPOSITORY
    if isinstance(error, ConfigurationError):
        return ErrorCategory.CONFIG
    return ErrorCategory.GENERAL


class ErrorHandler:
    """Centralized error reporting for CLI commands"""

    def __init__(self, console=None, debug_mode=False):
        self.console = console
        self.debug_mode = debug_mode

        self.error_counts = defaultdict(int)  # category -> count
        self.recent_errors: List[Dict[str, Any]] = []

        self.logger = logging.getLogger('hc_errors')

    def handle_error(self,
                     error: Exception,
                     category: Optional[ErrorCategory] = None,
                     severity: ErrorSeverity = ErrorSeverity.FATAL,
                     context: str = "",
                     operation: str = "") -> str:
        """
        Record an error and show it to the operator

        Args:
            error: The exception that occurred
            category: What kind of error this is (derived from the type if omitted)
            severity: FATAL and WARNING are printed, DEBUG is only logged
            context: Additional context about what was happening
            operation: Which command or step was running

        Returns:
            str: the formatted message that was shown or logged
        """
        category = category or categorize(error)
        self.error_counts[category.value] += 1

        message = self._format_error_message(error, context, operation)
        self.recent_errors.append({
            'timestamp': datetime.now().isoformat(),
            'category': category.value,
            'severity': severity.value,
            'error_type': type(error).__name__,
            'message': str(error),
            'context': context,
            'operation': operation
        })

        if severity == ErrorSeverity.DEBUG:
            self.logger.debug(f"{category.value}: {message}")
            return message

        self._route_error(message, severity)
        self.logger.log(
            logging.ERROR if severity == ErrorSeverity.FATAL else logging.WARNING,
            f"{category.value}: {message}",
            exc_info=self.debug_mode
        )
        return message

    def _format_error_message(self, error: Exception, context: str, operation: str) -> str:
        """Format error message consistently"""
        base_msg = str(error) or type(error).__name__
        if context:
            base_msg = f"{context}: {base_msg}"
        if operation and self.debug_mode:
            base_msg = f"[{operation}] {base_msg}"
        return base_msg

    def _route_error(self, message: str, severity: ErrorSeverity):
        """Print to the console when one is attached"""
        if not self.console:
            return
        if severity == ErrorSeverity.FATAL:
            self.console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
        else:
            self.console.print(f"[yellow]Warning:[/yellow] {escape(message)}", highlight=False)

    def get_error_summary(self) -> Dict[str, Any]:
        """Counts per category for debug output"""
        return {
            'total_errors': sum(self.error_counts.values()),
            'by_category': dict(self.error_counts),
            'last_error': self.recent_errors[-1] if self.recent_errors else None
        }
