"""Error taxonomy shared by the generation and commerce services."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base error for every failure the pipeline reports to callers."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    """Bad input; never retried."""

    status_code = 400


class NotFoundError(PipelineError):
    status_code = 404


class ConflictError(PipelineError):
    """Raised when a project lock is held or a state precondition fails."""

    status_code = 409


class TransientExternalError(PipelineError):
    """Timeouts and 5xx answers from an external service; safe to retry."""

    status_code = 503


class PermanentExternalError(PipelineError):
    """External rejection that retrying will not fix."""

    status_code = 502


class PageBudgetExceeded(PermanentExternalError):
    """Reconciled page count falls outside the vendor's ceiling."""

    status_code = 422

    def __init__(self, page_count: int, max_page_count: int) -> None:
        super().__init__(
            f"Page count {page_count} exceeds the product maximum of {max_page_count}"
        )
        self.page_count = page_count
        self.max_page_count = max_page_count


class DataIntegrityError(PipelineError):
    """Inbound event is missing data it must carry; acknowledged as a no-op."""

    status_code = 200


__all__ = [
    "PipelineError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "TransientExternalError",
    "PermanentExternalError",
    "PageBudgetExceeded",
    "DataIntegrityError",
]
