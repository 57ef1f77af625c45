"""Engine error taxonomy."""


class EngineError(Exception):
    """Base exception for engine errors."""

    def __init__(
        self,
        message: str,
        error_type: str = "unknown",
        *,
        recoverable: bool = True,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message.
            error_type: Type of error (auth, http, sync, step, etc.).
            recoverable: Whether the error is recoverable with retry.

        """
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.recoverable = recoverable


class AuthRequiredError(EngineError):
    """The user must sign in before the operation can run."""

    def __init__(self, message: str = "Automation failed to execute because the user is not logged in.") -> None:
        """Initialize authentication error."""
        super().__init__(message, error_type="auth", recoverable=False)


class AutomationError(EngineError):
    """An automation cannot run as defined."""

    def __init__(self, message: str) -> None:
        """Initialize automation error."""
        super().__init__(message, error_type="automation", recoverable=False)


class AutomationNotReadyError(AutomationError):
    """Required services never became ready for the automation."""

    def __init__(
        self,
        message: str = (
            "There is not enough information to run this automation. "
            "Make sure that required services are connected"
        ),
    ) -> None:
        """Initialize not-ready error."""
        super().__init__(message)


class StepExecutionError(EngineError):
    """A pipeline step raised; remaining steps were skipped."""

    def __init__(self, step_index: int, step_name: str, cause: BaseException) -> None:
        """Initialize step error.

        Args:
            step_index: Zero-based position of the failed step.
            step_name: Wire tag of the failed step.
            cause: The exception the step raised.

        """
        super().__init__(str(cause) or type(cause).__name__, error_type="step", recoverable=False)
        self.step_index = step_index
        self.step_name = step_name
        self.cause = cause


class HttpError(EngineError):
    """Backend replied with a non-success status."""

    def __init__(self, status: int, message: str = "", code: str | None = None) -> None:
        """Initialize HTTP error.

        Args:
            status: HTTP status code.
            message: Response body or error description.
            code: Machine readable error code from the response, if any.

        """
        recoverable = status >= 500 or status in (408, 429)
        super().__init__(message or f"HTTP {status}", error_type="http", recoverable=recoverable)
        self.status = status
        self.code = code


class TooManyRequestsError(HttpError):
    """Completion endpoint is rate limited."""

    def __init__(self, message: str = "Too many requests") -> None:
        """Initialize rate limit error."""
        super().__init__(429, message, "TOO_MANY_REQUESTS")


class CompletionServerError(HttpError):
    """Completion failed on the server side."""

    def __init__(self, status: int = 500, message: str = "Chat completion failed") -> None:
        """Initialize completion server error."""
        super().__init__(status, message, "CHAT_COMPLETION_FAILED")


class CompletionClientError(HttpError):
    """Completion request was rejected."""

    def __init__(self, status: int = 400, message: str = "Chat completion request failed") -> None:
        """Initialize completion client error."""
        super().__init__(status, message, "CHAT_COMPLETION_CLIENT_FAILED")


class SyncError(EngineError):
    """A connection failed to sync."""

    def __init__(self, key: str, cause: BaseException) -> None:
        """Initialize sync error.

        Args:
            key: Connection key that failed.
            cause: Underlying failure.

        """
        super().__init__(f"Sync failed for {key}: {cause}", error_type="sync", recoverable=True)
        self.key = key
        self.cause = cause

    @property
    def evicts(self) -> bool:
        """A 400 means the grant is gone and the connection must be re-authorized."""
        return isinstance(self.cause, HttpError) and self.cause.status == 400


class ClassificationBatchError(EngineError):
    """An email classification batch produced no usable verdicts."""

    def __init__(self, message: str = "Email classification failed") -> None:
        """Initialize classification error."""
        super().__init__(message, error_type="classification", recoverable=True)


class NetworkError(EngineError):
    """Backend could not be reached."""

    def __init__(self, message: str = "Network error") -> None:
        """Initialize network error."""
        super().__init__(message, error_type="network", recoverable=True)
