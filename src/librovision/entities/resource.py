"""Remote resource descriptor entities."""

from dataclasses import dataclass, field, replace
from typing import Any, Literal

FilterOp = Literal["eq", "neq", "gt", "gte", "lt", "lte", "ilike", "in", "cs", "is", "not.is"]
WriteMethod = Literal["insert", "upsert", "update", "delete"]


@dataclass(frozen=True)
class Filter:
    column: str
    op: FilterOp
    value: Any


@dataclass(frozen=True)
class ResourceDescriptor:
    """Store-agnostic description of a table read or write.

    Descriptors are immutable; the builder-style helpers return new copies so
    a base descriptor can be shared between calls.

    Attributes:
        table: Table or view name
        select: Column/embedding selection (PostgREST syntax)
        filters: Row filters, combined with AND
        or_filter: Optional raw OR expression, e.g. ``title.ilike.*dune*``
        order: (column, ascending) pairs applied in order
        offset: Rows to skip
        limit: Maximum rows to return
        count: Ask the store for the exact total row count
        single: Expect exactly one row (missing row -> NotFoundError)
        method: Write method, ignored for reads
        on_conflict: Conflict target columns for upserts
        ignore_duplicates: On conflict keep the existing row instead of merging
    """

    table: str
    select: str = "*"
    filters: tuple[Filter, ...] = ()
    or_filter: str | None = None
    order: tuple[tuple[str, bool], ...] = ()
    offset: int | None = None
    limit: int | None = None
    count: bool = False
    single: bool = False
    method: WriteMethod = "insert"
    on_conflict: str | None = None
    ignore_duplicates: bool = False

    def where(self, column: str, op: FilterOp, value: Any) -> "ResourceDescriptor":
        return replace(self, filters=self.filters + (Filter(column, op, value),))

    def eq(self, column: str, value: Any) -> "ResourceDescriptor":
        return self.where(column, "eq", value)

    def order_by(self, column: str, ascending: bool = True) -> "ResourceDescriptor":
        return replace(self, order=self.order + ((column, ascending),))

    def page(self, page: int, page_size: int) -> "ResourceDescriptor":
        """Restrict to one 1-based page of ``page_size`` rows."""
        return replace(self, offset=(page - 1) * page_size, limit=page_size, count=True)

    def any_of(self, expression: str) -> "ResourceDescriptor":
        """Add a raw OR expression, e.g. ``title.ilike.*dune*,authors.cs.{dune}``."""
        return replace(self, or_filter=expression)

    def counted(self) -> "ResourceDescriptor":
        """Ask only for the total row count (no rows)."""
        return replace(self, count=True, limit=0)

    def one(self) -> "ResourceDescriptor":
        return replace(self, single=True)

    def as_write(
        self,
        method: WriteMethod,
        on_conflict: str | None = None,
        ignore_duplicates: bool = False,
    ) -> "ResourceDescriptor":
        return replace(
            self, method=method, on_conflict=on_conflict, ignore_duplicates=ignore_duplicates
        )


@dataclass
class StoreResult:
    """Rows returned by the remote store.

    Attributes:
        data: A list of rows, a single row (``single`` reads / writes), or None
        count: Total matching rows when ``count`` was requested
    """

    data: Any = None
    count: int | None = None
    rows: list[dict[str, Any]] = field(init=False)

    def __post_init__(self) -> None:
        if self.data is None:
            self.rows = []
        elif isinstance(self.data, list):
            self.rows = self.data
        else:
            self.rows = [self.data]

    @property
    def first(self) -> dict[str, Any] | None:
        return self.rows[0] if self.rows else None
