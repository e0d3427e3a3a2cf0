"""Dependency injection configuration for FastAPI app.

Uses FastAPI's app.state pattern for storing service instances.

Pattern:
    - Cache context, repositories and services stored in app.state during lifespan
    - Dependency functions retrieve from request.app.state
    - Clean separation, no global mutable state
"""

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request

from librovision.config import configure_logging, get_redis_client, settings
from librovision.handlers import SearchHandler
from librovision.repositories import GoogleBooksRepository, SupabaseRepository
from librovision.services import (
    BookService,
    CacheContext,
    CommentService,
    ListService,
    ReviewService,
    SocialService,
)

logger = logging.getLogger(__name__)


def get_cache_context(request: Request) -> CacheContext:
    """Dependency injection for CacheContext from app.state.

    Raises:
        RuntimeError: If the context is not initialized
    """
    context = getattr(request.app.state, "cache_context", None)
    if context is None:
        raise RuntimeError("CacheContext not initialized. Check lifespan setup.")
    return context


def get_search_handler(request: Request) -> SearchHandler:
    """Dependency injection for SearchHandler from app.state.

    Raises:
        RuntimeError: If handler is not initialized
    """
    handler = getattr(request.app.state, "search_handler", None)
    if handler is None:
        raise RuntimeError("SearchHandler not initialized. Check lifespan setup.")
    return handler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI app.

    Initializes all layers and stores them in app.state:
    1. Cache context (memory + Redis + session tiers, query client)
    2. Repositories (Supabase store, Google Books catalog)
    3. Domain services and the search handler

    Cleanup:
        Closes HTTP clients and removes everything from app.state on shutdown
    """
    configure_logging()

    context = CacheContext.create(redis_client=get_redis_client())
    store = SupabaseRepository.create()
    catalog = GoogleBooksRepository.create()

    app.state.cache_context = context
    app.state.store = store
    app.state.catalog = catalog
    app.state.book_service = BookService(store=store, context=context, catalog=catalog)
    app.state.review_service = ReviewService(store=store, context=context)
    app.state.comment_service = CommentService(store=store, context=context)
    app.state.list_service = ListService(store=store, context=context)
    app.state.social_service = SocialService(store=store, context=context)
    app.state.search_handler = SearchHandler(
        catalog=catalog, context=context, has_api_key=catalog.has_api_key
    )

    logger.info("LibroVision API started (cache prefix %r)", settings.cache_prefix)
    if not catalog.has_api_key:
        logger.info("GOOGLE_BOOKS_API_KEY not set, using the anonymous catalog quota")

    yield

    await catalog.close()
    await store.close()
    for name in (
        "search_handler",
        "social_service",
        "list_service",
        "comment_service",
        "review_service",
        "book_service",
        "catalog",
        "store",
        "cache_context",
    ):
        delattr(app.state, name)
    logger.info("LibroVision API shut down")


# Type aliases for cleaner dependency injection
ContextDep = Annotated[CacheContext, Depends(get_cache_context)]
HandlerDep = Annotated[SearchHandler, Depends(get_search_handler)]
