"""Response DTOs for API endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class BookSummary(BaseModel):
    """One normalized catalog result."""

    id: str = Field(..., description="Catalog volume id")
    google_book_id: str | None = Field(None, description="Google Books volume id")
    title: str = Field(..., description="Title, 'No title' when the catalog has none")
    author: str = Field(..., description="Comma-joined authors or 'Unknown Author'")
    cover_image_url: str | None = Field(None, description="Highest-quality cover, always https")
    summary: str | None = Field(None, description="Description or 'No summary available.'")
    average_rating: float | None = Field(None, description="Catalog average rating")
    genres: list[str] = Field(default_factory=list, description="Catalog categories")
    publication_year: int | None = Field(None, description="Four-digit publication year")
    isbn: str | None = Field(None, description="ISBN-13, else ISBN-10")


class SearchErrorResponse(BaseModel):
    """Structured error body returned by the search proxy."""

    error: str = Field(..., description="Short error title")
    message: str = Field(..., description="Human-readable explanation")
    remediation: str = Field(..., description="Suggested next step for the user or operator")
    details: Any = Field(None, description="Upstream error payload, if any")


class HealthCheckResponse(BaseModel):
    """Response DTO for health check."""

    status: str = Field(..., description="Health status: 'healthy' or 'unhealthy'")
    redis_healthy: bool = Field(..., description="Whether the durable cache tier is reachable")
    catalog_configured: bool = Field(..., description="Whether a Google Books API key is set")
    cache: dict[str, Any] = Field(default_factory=dict, description="Memory-tier size per domain")
