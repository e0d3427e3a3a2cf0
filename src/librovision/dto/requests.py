"""Request DTOs for API endpoints."""

from pydantic import BaseModel, Field


class BookSearchParams(BaseModel):
    """Query parameters of ``GET /api/search/books``.

    ``max_results`` above the catalog limit is capped rather than rejected.
    """

    q: str | None = Field(None, description="Free-text search query")
    page: int = Field(1, description="1-based result page", ge=1)
    max_results: int = Field(20, alias="maxResults", description="Results per page (capped at 40)", ge=1)

    model_config = {"populate_by_name": True}
