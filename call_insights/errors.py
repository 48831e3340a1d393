"""
Error taxonomy for the analytics pipeline.

Every error the pipeline surfaces to a caller is a ``CallInsightsError``
carrying a machine-readable ``kind``, the HTTP status the API layer should
answer with, and a short list of concrete next steps for the user.
Malformed record fields are never raised; see ``services.normalizer``.
"""

from __future__ import annotations

from typing import Any, ClassVar


class CallInsightsError(Exception):
    """Base class for errors that map onto an API response."""

    kind: ClassVar[str] = "internal_error"
    status_code: ClassVar[int] = 500
    default_suggestions: ClassVar[tuple[str, ...]] = (
        "Try the question again in a moment",
        "Rephrase the question more specifically",
        "Narrow the date range or filters",
    )

    def __init__(self, message: str, suggestions: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.suggestions = list(suggestions) if suggestions else list(self.default_suggestions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "kind": self.kind,
            "suggestions": self.suggestions,
        }


# ── Input errors (400, never retried) ────────────────────────────


class InvalidQueryError(CallInsightsError):
    kind = "invalid_input"
    status_code = 400
    default_suggestions = (
        "Type a question about your call records",
        "Use one of the suggested prompts",
    )


class InsufficientDataError(CallInsightsError):
    kind = "insufficient_data"
    status_code = 400
    default_suggestions = (
        "Load the full dataset instead of a sample",
        "Widen the date range or remove filters",
        "Ask a question about overall metrics instead",
    )


class QueryTooComplexError(CallInsightsError):
    kind = "query_too_complex"
    status_code = 400
    default_suggestions = (
        "Ask a more specific question",
        "Filter the dataset to a shorter period",
        "Search for fewer keywords at once",
    )


class RecordNotFoundError(CallInsightsError):
    kind = "not_found"
    status_code = 404
    default_suggestions = (
        "Check the contact ID",
        "Refresh the call list and pick the call again",
    )


# ── Completion service errors ────────────────────────────────────


class CompletionRateLimitError(CallInsightsError):
    kind = "rate_limited"
    status_code = 429
    default_suggestions = (
        "Wait a minute and try again",
        "Ask fewer questions in quick succession",
        "Narrow the filters so the request is smaller",
    )


class CompletionAuthError(CallInsightsError):
    kind = "upstream_auth"
    status_code = 401
    default_suggestions = (
        "Check the completion service API key configuration",
        "Contact an administrator",
    )


class CompletionRequestError(CallInsightsError):
    kind = "upstream_bad_request"
    status_code = 400
    default_suggestions = (
        "Rephrase the question",
        "Try a shorter or more specific question",
    )


class CompletionServiceError(CallInsightsError):
    kind = "upstream_error"
    status_code = 500


class CompletionCancelledError(CallInsightsError):
    kind = "cancelled"
    status_code = 500
    default_suggestions = (
        "Send the question again",
        "Keep the page open until the answer arrives",
    )


# ── Storage errors ───────────────────────────────────────────────


class StorageTimeoutError(CallInsightsError):
    kind = "storage_timeout"
    status_code = 408
    default_suggestions = (
        "Narrow the date range",
        "Filter by agent or disposition",
        "Try again in a moment",
    )


class StorageError(CallInsightsError):
    kind = "storage_error"
    status_code = 500
    default_suggestions = (
        "Try again in a moment",
        "Refresh the page",
    )
