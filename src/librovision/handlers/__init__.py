"""Handler layer for HTTP endpoints.

This layer contains the HTTP request/response handlers.
Handlers depend on services and catalog clients, not directly on the
remote data store.

Architecture:
    Handler -> Service -> Repository
    (HTTP)  -> (Business) -> (Data Access)
"""

from .search_handler import SearchHandler, error_response, remediation_for

__all__ = [
    "SearchHandler",
    "error_response",
    "remediation_for",
]
