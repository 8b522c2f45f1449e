"""
Standard exit codes and error types for branchsource.

Following Unix/POSIX conventions for command-line tools. The exception
classes double as the error taxonomy of the discovery core:

- NotFoundError: translated to an empty/absent result, never escapes
- TransportError: I/O or unexpected HTTP status, fatal to the scan step
- AuthenticationError: installation token could not be obtained
- ConfigError: malformed private key or credential settings
"""
from typing import Optional

# Standard POSIX exit codes
SUCCESS = 0              # Successful termination
GENERAL_ERROR = 1        # General errors
USAGE_ERROR = 2          # Misuse of shell command (wrong arguments, etc.)

# Application-specific exit codes (64-113 are typically available)
NOTHING_DISCOVERED = 64  # No heads matched the discovery criteria
API_ERROR = 65           # External API call failed
CONFIG_ERROR = 66        # Configuration file or credential error
NETWORK_ERROR = 68       # Network connection failed
AUTH_ERROR = 69          # Authentication/authorization failed
DATA_ERROR = 70          # Data format or validation error
INTERRUPTED = 130        # Terminated by Ctrl+C (SIGINT)

# Exit code mappings for common exceptions
EXCEPTION_EXIT_CODES = {
    'ConnectionError': NETWORK_ERROR,
    'TimeoutError': NETWORK_ERROR,
    'ValueError': DATA_ERROR,
    'KeyError': DATA_ERROR,
    'JSONDecodeError': DATA_ERROR,
    'KeyboardInterrupt': INTERRUPTED,
}


def get_exit_code_for_exception(exc: Exception) -> int:
    """
    Get the appropriate exit code for an exception.

    Args:
        exc: The exception that occurred

    Returns:
        Appropriate exit code
    """
    if isinstance(exc, CommandError):
        return exc.exit_code
    exc_name = exc.__class__.__name__
    return EXCEPTION_EXIT_CODES.get(exc_name, GENERAL_ERROR)


class CommandError(Exception):
    """
    Exception that commands can raise to indicate specific exit codes.
    """
    def __init__(self, message: str, exit_code: int = GENERAL_ERROR):
        super().__init__(message)
        self.exit_code = exit_code


class NothingDiscoveredError(CommandError):
    """Raised when a scan observed no heads."""
    def __init__(self, message: str = "No heads discovered"):
        super().__init__(message, NOTHING_DISCOVERED)


class NotFoundError(CommandError):
    """
    Raised by the remote client when GitHub answers 404.

    The discovery core translates this into an empty or absent result.
    """
    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message, API_ERROR)
        self.url = url


class TransportError(CommandError):
    """Raised on I/O failures and unexpected HTTP statuses."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, NETWORK_ERROR if status_code is None else API_ERROR)
        self.status_code = status_code


class AuthenticationError(CommandError):
    """Raised when an installation token cannot be issued."""
    def __init__(self, message: str):
        super().__init__(message, AUTH_ERROR)


class ConfigError(CommandError):
    """Raised when there's a configuration error."""
    def __init__(self, message: str):
        super().__init__(message, CONFIG_ERROR)


class ScanInterrupted(CommandError):
    """Raised when a scan notices its cancellation signal between steps."""
    def __init__(self, message: str = "Scan interrupted"):
        super().__init__(message, INTERRUPTED)
