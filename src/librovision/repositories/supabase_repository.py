"""Supabase implementation of DataStore.

Translates ResourceDescriptors into PostgREST requests:

    read(ResourceDescriptor("reviews").eq("book_id", "b1").order_by("created_at", False).page(1, 10))
    -> GET /rest/v1/reviews?select=*&book_id=eq.b1&order=created_at.desc&offset=0&limit=10
       Prefer: count=exact

Row-level security and triggers (denormalized counters, notifications fan-out
on the server) live in the database and are not modelled here.
"""

import logging
from typing import Any

import httpx

from librovision.config import settings
from librovision.entities import Filter, ResourceDescriptor, StoreResult
from librovision.exceptions import NotFoundError, RequestError

logger = logging.getLogger(__name__)

SINGLE_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"
NO_ROWS_CODE = "PGRST116"


def _format_scalar(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _quote(value: Any) -> str:
    text = _format_scalar(value)
    if any(c in text for c in ',(){}" '):
        escaped = text.replace('"', '\\"')
        return f'"{escaped}"'
    return text


def format_filter(f: Filter) -> tuple[str, str]:
    """Render one filter as a PostgREST query parameter."""
    if f.op == "in":
        return f.column, f"in.({','.join(_quote(v) for v in f.value)})"
    if f.op == "cs":
        values = f.value if isinstance(f.value, (list, tuple, set)) else [f.value]
        return f.column, f"cs.{{{','.join(_quote(v) for v in values)}}}"
    return f.column, f"{f.op}.{_format_scalar(f.value)}"


def parse_content_range(header: str | None) -> int | None:
    """Extract the total from a ``Content-Range: 0-9/42`` header."""
    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else None


class SupabaseRepository:
    """PostgREST client for the hosted relational store.

    This class satisfies the DataStore protocol through structural typing.

    Example:
        ```python
        store = SupabaseRepository.create()
        store.set_access_token(session_token)

        result = await store.read(
            ResourceDescriptor("books").eq("id", "b1").one()
        )
        ```
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the Supabase repository.

        Args:
            base_url: Project URL. Defaults to settings.supabase_url.
            api_key: Anon (publishable) key. Defaults to settings.
            timeout: Request timeout in seconds.
            client: Pre-built httpx client (tests pass one with a MockTransport).
        """
        self._base_url = (base_url or settings.supabase_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.supabase_anon_key
        self._timeout = timeout or settings.supabase_timeout
        self._access_token: str | None = None
        self._client = client

    @classmethod
    def create(cls, base_url: str | None = None, api_key: str | None = None) -> "SupabaseRepository":
        """Factory method to create SupabaseRepository with defaults from settings."""
        return cls(base_url=base_url, api_key=api_key)

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-load the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
        return self._client

    def set_access_token(self, token: str | None) -> None:
        """Use a signed-in user's JWT instead of the anon key (None to sign out)."""
        self._access_token = token

    def _headers(self, descriptor: ResourceDescriptor, write: bool = False) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
        }
        prefer = []
        if descriptor.count:
            prefer.append("count=exact")
        if write:
            prefer.append("return=representation")
            if descriptor.method == "upsert":
                prefer.append(
                    "resolution=ignore-duplicates"
                    if descriptor.ignore_duplicates
                    else "resolution=merge-duplicates"
                )
        if prefer:
            headers["Prefer"] = ",".join(prefer)
        if descriptor.single:
            headers["Accept"] = SINGLE_OBJECT_MEDIA_TYPE
        return headers

    def _params(self, descriptor: ResourceDescriptor, write: bool = False) -> list[tuple[str, str]]:
        params: list[tuple[str, str]] = []
        if not write or descriptor.select != "*":
            params.append(("select", descriptor.select))
        params.extend(format_filter(f) for f in descriptor.filters)
        if descriptor.or_filter:
            params.append(("or", f"({descriptor.or_filter})"))
        if descriptor.order:
            params.append(
                ("order", ",".join(f"{col}.{'asc' if asc else 'desc'}" for col, asc in descriptor.order))
            )
        if descriptor.offset is not None:
            params.append(("offset", str(descriptor.offset)))
        if descriptor.limit is not None:
            params.append(("limit", str(descriptor.limit)))
        if write and descriptor.method == "upsert" and descriptor.on_conflict:
            params.append(("on_conflict", descriptor.on_conflict))
        return params

    def _raise_for_error(self, response: httpx.Response, descriptor: ResourceDescriptor) -> None:
        if response.status_code < 400:
            return

        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}
        if not isinstance(body, dict):
            body = {"message": str(body)}
        message = body.get("message") or response.reason_phrase
        code = body.get("code")

        if code == NO_ROWS_CODE or (descriptor.single and response.status_code == 406):
            raise NotFoundError(f"No {descriptor.table} row matched", code=code)
        raise RequestError(
            f"{descriptor.table}: {message}", status=response.status_code, code=code
        )

    async def _send(
        self,
        method: str,
        descriptor: ResourceDescriptor,
        payload: Any = None,
        write: bool = False,
    ) -> StoreResult:
        url = f"{self._base_url}/rest/v1/{descriptor.table}"
        try:
            response = await self.client.request(
                method,
                url,
                params=self._params(descriptor, write=write),
                headers=self._headers(descriptor, write=write),
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.warning("Supabase %s %s failed: %s", method, descriptor.table, e)
            raise RequestError(f"{descriptor.table}: {e}") from e

        self._raise_for_error(response, descriptor)

        data = response.json() if response.content else None
        return StoreResult(data=data, count=parse_content_range(response.headers.get("content-range")))

    async def read(self, descriptor: ResourceDescriptor) -> StoreResult:
        return await self._send("GET", descriptor)

    async def write(
        self,
        descriptor: ResourceDescriptor,
        payload: dict[str, Any] | list[dict[str, Any]] | None = None,
    ) -> StoreResult:
        method = {
            "insert": "POST",
            "upsert": "POST",
            "update": "PATCH",
            "delete": "DELETE",
        }[descriptor.method]
        return await self._send(method, descriptor, payload=payload, write=True)

    async def health_check(self) -> bool:
        try:
            response = await self.client.get(
                f"{self._base_url}/rest/v1/", headers={"apikey": self._api_key}
            )
            return response.status_code < 500
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
