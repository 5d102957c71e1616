"""Error taxonomy for the comparison pipeline.

Every error carries a user-facing message and a ``retryable`` flag. The
worker retries only ``TransientUpstreamError`` subclasses; every other
``RepoCompareError`` is a domain failure that is surfaced immediately.

The exception message is for logs only. ``user_message`` is the class
default unless a caller passes one explicitly.
"""

GENERIC_FAILURE_MESSAGE = "Something went wrong. Please try again."


class RepoCompareError(Exception):
    """Base class for all repocompare errors."""

    retryable = False
    default_user_message = GENERIC_FAILURE_MESSAGE

    def __init__(self, message: str = "", user_message: str = None):
        super().__init__(message or self.default_user_message)
        self.user_message = user_message or self.default_user_message


# ── (a) Validation ────────────────────────────────────────────────────

class ValidationError(RepoCompareError):
    """The request itself is unusable."""


class InvalidQueryError(ValidationError):
    default_user_message = "Invalid query."

    def __init__(self, message: str = ""):
        super().__init__(message, user_message=f"Invalid query: {message}" if message else None)


class QueryTooLongError(ValidationError):
    default_user_message = "Query too long (max 500 characters)"


# ── (b) Empty results ─────────────────────────────────────────────────

class NoRepositoriesFoundError(RepoCompareError):
    default_user_message = "No repositories found for your query. Try different keywords."


# ── (c) Transient upstream failures ───────────────────────────────────

class TransientUpstreamError(RepoCompareError):
    """Rate limits and timeouts from search or completion services."""

    retryable = True


class SourceRateLimitError(TransientUpstreamError):
    default_user_message = "GitHub rate limit reached. Please try again in a few minutes."


class SourceTimeoutError(TransientUpstreamError):
    default_user_message = "Request timed out. Please try again."


class CompletionTransientError(TransientUpstreamError):
    default_user_message = "The AI service is temporarily unavailable. Please try again in a few minutes."


# ── (d) Budget and per-user caps ──────────────────────────────────────

class BudgetError(RepoCompareError):
    """Rejected before any job is enqueued."""


class BudgetExceededError(BudgetError):
    default_user_message = "Daily budget has been exceeded. Please try again tomorrow."


class UserLimitReachedError(BudgetError):
    default_user_message = "You've reached your daily limit. Try again tomorrow!"


# ── Other non-retryable failures ──────────────────────────────────────

class SourceSearchError(RepoCompareError):
    """Non-transient failure from the repository search service."""

    default_user_message = "GitHub search failed. Please try again."


class SourceNotFoundError(SourceSearchError):
    default_user_message = "Repository or README not found on GitHub."


class ModelNotWhitelistedError(RepoCompareError):
    """Model has no known pricing and must not be called."""


class SuspiciousOutputError(RepoCompareError):
    """Model output matched a prompt-leak or injection pattern."""


class CategoryResolutionError(RepoCompareError):
    pass


class RecordNotFoundError(RepoCompareError):
    default_user_message = "Not found."


class ComparisonError(RepoCompareError):
    """The ranking model returned an unusable comparison."""

    default_user_message = "Failed to generate comparison. Please try again."


def user_message_for(error: Exception) -> str:
    """Map any exception to the message shown on the progress channel."""
    if isinstance(error, RepoCompareError):
        return error.user_message
    if isinstance(error, TimeoutError):
        return SourceTimeoutError.default_user_message
    return GENERIC_FAILURE_MESSAGE
