"""Exception taxonomy for the receipt extraction cascade.

Only ``ImageDecodeError``, ``ProcessingFailedError`` and
``ProcessingTimeoutError`` ever reach a caller of the pipeline. Every other
error is absorbed by the orchestrator and shows up in the logs and in
``routes_attempted``.
"""

from typing import Any


class ReceiptCascadeError(Exception):
    """Base exception for all receipt cascade errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ImageDecodeError(ReceiptCascadeError):
    """Raised when the uploaded bytes cannot be decoded as an image."""


class ProviderInvocationError(ReceiptCascadeError):
    """Raised when a provider call fails or returns an unusable response."""


class ExtractionRefusedError(ProviderInvocationError):
    """Raised when the model refuses to process the request."""


class ExtractionIncompleteError(ProviderInvocationError):
    """Raised when the response is truncated due to token limits."""


class ParseError(ReceiptCascadeError):
    """Raised when a provider response does not match the receipt schema."""


class BudgetExceededError(ReceiptCascadeError):
    """Raised when a route costs more than the remaining daily budget."""

    def __init__(self, route_name: str, cost: float, remaining: float) -> None:
        super().__init__(
            f"Route '{route_name}' is not affordable",
            {"route": route_name, "cost": cost, "remaining": round(remaining, 6)},
        )


class ProcessingFailedError(ReceiptCascadeError):
    """Raised when even the last-resort OCR path fails."""


class ProcessingTimeoutError(ReceiptCascadeError):
    """Raised when the caller's deadline expires before any result exists."""


class CatalogError(ReceiptCascadeError):
    """Raised for an invalid route catalog."""


__all__ = [
    "ReceiptCascadeError",
    "ImageDecodeError",
    "ProviderInvocationError",
    "ExtractionRefusedError",
    "ExtractionIncompleteError",
    "ParseError",
    "BudgetExceededError",
    "ProcessingFailedError",
    "ProcessingTimeoutError",
    "CatalogError",
]
