"""Route table extraction and diffing across generations."""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from hotmount.routes.tree import (
    HttpMethod,
    MiddlewareNode,
    MountNode,
    RouteNode,
    RoutingNode,
    join_paths,
)


@dataclass(frozen=True)
class RouteEntry:
    """One exposed METHOD PATH pair."""

    method: HttpMethod
    path: str
    full_url: str

    @property
    def key(self) -> str:
        return f"{self.method.value} {self.path}"

    @property
    def display(self) -> str:
        return f"{self.method.value:<4} {self.full_url}"

    def __str__(self) -> str:
        return self.key


RouteSnapshot = tuple[RouteEntry, ...]


@dataclass(frozen=True)
class Delta:
    """Route changes between two consecutive successful snapshots.

    ``initial`` marks the first listing, which has nothing to compare
    against; it is distinct from an empty delta.
    """

    added: frozenset[str] = field(default_factory=frozenset)
    removed: frozenset[str] = field(default_factory=frozenset)
    initial: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.initial and not self.added and not self.removed


def _walk(nodes: Iterable[RoutingNode], prefix: str) -> Iterator[tuple[HttpMethod, str]]:
    for node in nodes:
        if isinstance(node, RouteNode):
            for method in node.methods:
                for path in node.paths:
                    yield method, join_paths(prefix, path)
        elif isinstance(node, MountNode):
            yield from _walk(node.children, join_paths(prefix, node.prefix) if node.prefix else prefix)
        elif isinstance(node, MiddlewareNode):
            continue


def extract_routes(tree: Iterable[RoutingNode], base_url: str = "") -> RouteSnapshot:
    """Flatten a routing tree into entries, in registration order.

    A METHOD PATH pair shadowed by an earlier registration is listed once,
    at its first position.
    """
    base = base_url.rstrip("/")
    seen: set[tuple[HttpMethod, str]] = set()
    entries: list[RouteEntry] = []

    for method, path in _walk(tree, ""):
        if (method, path) in seen:
            continue
        seen.add((method, path))
        entries.append(RouteEntry(method=method, path=path, full_url=f"{base}{path}"))

    return tuple(entries)


def diff(previous: RouteSnapshot | None, current: RouteSnapshot) -> Delta:
    """Compare two snapshots by their METHOD PATH keys."""
    if previous is None:
        return Delta(initial=True)

    old_keys = {entry.key for entry in previous}
    new_keys = {entry.key for entry in current}
    return Delta(
        added=frozenset(new_keys - old_keys),
        removed=frozenset(old_keys - new_keys),
    )
