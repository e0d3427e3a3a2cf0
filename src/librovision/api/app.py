import logging
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from librovision.api.dependencies import ContextDep, HandlerDep, lifespan
from librovision.config import settings
from librovision.dto import BookSearchParams, BookSummary, HealthCheckResponse
from librovision.exceptions import UpstreamAuthError, UpstreamSearchError
from librovision.handlers import error_response

logger = logging.getLogger(__name__)

OFFLINE_PAGE = Path(__file__).resolve().parent.parent / "static" / "offline.html"

app = FastAPI(
    title="LibroVision API",
    description="Book search proxy and cache layer for LibroVision",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,  # type: ignore[arg-type]
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(UpstreamSearchError)
async def upstream_error_handler(request: Request, exc: UpstreamSearchError) -> JSONResponse:
    title = (
        "Google Books API authentication failed"
        if isinstance(exc, UpstreamAuthError)
        else "Failed to fetch books"
    )
    return error_response(exc.status, title, exc.message, exc.details)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        "Something went wrong while handling the request.",
    )


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "name": "LibroVision API",
        "version": "0.1.0",
        "description": "Book search proxy and cache layer for LibroVision",
        "endpoints": {
            "search": "/api/search/books",
            "cache_stats": "/api/cache/stats",
            "offline": "/offline",
            "health": "/health",
            "docs": "/docs",
        },
    }


@app.get("/health", response_model=HealthCheckResponse)
async def health(context: ContextDep, handler: HandlerDep, response: Response) -> HealthCheckResponse:
    """Health check endpoint (503 when the durable tier is unreachable)."""
    durable = context.books.durable
    redis_healthy = durable.health_check() if durable is not None else False
    if not redis_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return handler.health_check(redis_healthy)


@app.get("/api/search/books", response_model=list[BookSummary])
async def search_books(
    handler: HandlerDep,
    q: str | None = None,
    page: int = Query(1, ge=1),
    max_results: int = Query(20, alias="maxResults", ge=1),
):
    """Search the book catalog.

    Returns normalized summaries, or a ``SearchErrorResponse`` body with the
    upstream status (400 for a missing query).
    """
    params = BookSearchParams(q=q, page=page, max_results=max_results)
    return await handler.search_books(params)


@app.get("/api/cache/stats")
async def cache_stats(context: ContextDep) -> dict[str, Any]:
    """Per-domain tier hit/miss counters and query-layer counters."""
    return {
        "domains": context.get_detailed_stats(),
        "queries": context.query_client.get_stats(),
    }


@app.get("/offline", include_in_schema=False)
async def offline() -> FileResponse:
    """Static fallback page shown when the network is unavailable."""
    return FileResponse(OFFLINE_PAGE, media_type="text/html")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "librovision.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
