from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from bootcache.models.cache import QueryKey

# (viewer_id, *params) → key
KeyBuilder = Callable[..., QueryKey]
QueryFetch = Callable[[], Awaitable[Any]]
# (viewer_id, *params) → zero-argument coroutine function
FetchFactory = Callable[..., QueryFetch]


@dataclass(frozen=True)
class QueryDescriptor:
    """Static description of one named query.

    ``fetch_for(viewer_id, *params)`` returns a zero-argument coroutine function
    so the scheduler can treat every remote call uniformly.
    """

    name: str
    key_builder: KeyBuilder
    fetch_for: FetchFactory
    stale_budget_seconds: float
    lane: int
    # Called with the fetched value after a successful write.
    on_success: Callable[[Any], None] | None = None
    # Returns False when the query does not apply to this viewer.
    applies_to: Callable[[str], bool] | None = None

    def key(self, viewer_id: str, *params: str) -> QueryKey:
        return self.key_builder(viewer_id, *params)

    def enabled_for(self, viewer_id: str) -> bool:
        return self.applies_to is None or self.applies_to(viewer_id)


@dataclass
class RegistryIndexes:
    """Lookup tables built once from the registry entries."""

    # query name → descriptor
    by_name: dict[str, QueryDescriptor] = field(default_factory=dict)

    # lane index → descriptors in declaration order
    by_lane: dict[int, list[QueryDescriptor]] = field(default_factory=dict)

    def get(self, name: str) -> QueryDescriptor | None:
        return self.by_name.get(name)

    def lane(self, index: int) -> list[QueryDescriptor]:
        return self.by_lane.get(index, [])
