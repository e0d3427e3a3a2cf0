"""Pure helpers for editing cached query data in optimistic predictions.

Cached values come in four shapes: a single entity dict, a list of entities,
one PaginatedResponse dict (``{"items", "total", ...}``) and infinite-query
data (``{"pages": [...], "page_params": [...]}``). The helpers here walk all
of them and always return new containers, never mutating the input.
"""

from collections.abc import Callable
from typing import Any

Item = dict[str, Any]


def _map_list(items: list[Item], fn: Callable[[Item], Item | None]) -> tuple[list[Item], int]:
    out = []
    removed = 0
    for item in items:
        new = fn(item)
        if new is None:
            removed += 1
        else:
            out.append(new)
    return out, removed


def map_items(data: Any, fn: Callable[[Item], Item | None]) -> Any:
    """Apply ``fn`` to every entity; ``fn`` returning None drops it from lists.

    A single entity is passed through ``fn`` directly (None leaves it as is).
    Page totals are decremented for dropped items.
    """
    if data is None:
        return None
    if isinstance(data, dict) and isinstance(data.get("pages"), list):
        return {**data, "pages": [map_items(page, fn) for page in data["pages"]]}
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        items, removed = _map_list(data["items"], fn)
        return {**data, "items": items, "total": max(0, data.get("total", 0) - removed)}
    if isinstance(data, list):
        return _map_list(data, fn)[0]
    if isinstance(data, dict):
        return fn(data) or data
    return data


def iter_items(data: Any) -> list[Item]:
    if data is None:
        return []
    if isinstance(data, dict) and isinstance(data.get("pages"), list):
        return [item for page in data["pages"] for item in iter_items(page)]
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return list(data["items"])
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        return [data]
    return []


def contains_entity(data: Any, entity_id: str) -> bool:
    return any(item.get("id") == entity_id for item in iter_items(data))


def update_entity(data: Any, entity_id: str, changes: Callable[[Item], Item]) -> Any:
    """Merge ``changes(item)`` into the entity with ``entity_id`` wherever it appears."""
    return map_items(
        data, lambda item: {**item, **changes(item)} if item.get("id") == entity_id else item
    )


def remove_entities(data: Any, predicate: Callable[[Item], bool]) -> Any:
    """Drop list entries matching ``predicate`` (single entities are kept)."""
    return map_items(data, lambda item: None if predicate(item) else item)


def prepend_item(data: Any, item: Item) -> Any:
    """Insert ``item`` at the top of the first page."""
    if data is None:
        return None
    if isinstance(data, dict) and data.get("pages"):
        pages = list(data["pages"])
        pages[0] = prepend_item(pages[0], item)
        return {**data, "pages": pages}
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return {**data, "items": [item, *data["items"]], "total": data.get("total", 0) + 1}
    if isinstance(data, list):
        return [item, *data]
    return data


def append_item(data: Any, item: Item) -> Any:
    """Add ``item`` at the end of the last loaded page."""
    if data is None:
        return None
    if isinstance(data, dict) and data.get("pages"):
        pages = list(data["pages"])
        pages[-1] = append_item(pages[-1], item)
        return {**data, "pages": pages}
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return {**data, "items": [*data["items"], item], "total": data.get("total", 0) + 1}
    if isinstance(data, list):
        return [*data, item]
    return data


def replace_entity(data: Any, entity_id: str, new_item: Item) -> Any:
    """Swap the entity with ``entity_id`` (e.g. a temporary one) for ``new_item``."""
    return map_items(data, lambda item: new_item if item.get("id") == entity_id else item)


def adjust_count(item: Item, field: str, delta: int) -> Item:
    return {field: max(0, (item.get(field) or 0) + delta)}
