"""Data Transfer Objects for API contracts.

These Pydantic models define the external API contract.
They are used for request/response validation and serialization.

Internal domain logic should use entities from the entities package and the
records in ``librovision.models``.
"""

from .requests import BookSearchParams
from .responses import BookSummary, HealthCheckResponse, SearchErrorResponse

__all__ = [
    "BookSearchParams",
    "BookSummary",
    "HealthCheckResponse",
    "SearchErrorResponse",
]
