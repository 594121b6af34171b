"""Framework-neutral routing tree.

Any HTTP framework adapter translates its router into these nodes; the route
extractor only ever sees this representation.
"""

import re
from dataclasses import dataclass
from enum import Enum


class HttpMethod(str, Enum):
    """HTTP verbs, in listing order."""

    GET = "GET"
    HEAD = "HEAD"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    TRACE = "TRACE"
    CONNECT = "CONNECT"

    @classmethod
    def ordered(cls, methods: "set[HttpMethod] | frozenset[HttpMethod]") -> tuple["HttpMethod", ...]:
        """Sort methods into listing order."""
        return tuple(method for method in cls if method in methods)


@dataclass(frozen=True)
class RouteNode:
    """An endpoint declaring one or more methods over one or more path aliases."""

    methods: tuple[HttpMethod, ...]
    paths: tuple[str, ...]
    name: str | None = None


@dataclass(frozen=True)
class MountNode:
    """A sub-router mounted under a path prefix."""

    prefix: str
    children: tuple["RoutingNode", ...]


@dataclass(frozen=True)
class MiddlewareNode:
    """Anything in the dispatch chain that is neither a route nor a router."""

    name: str


RoutingNode = RouteNode | MountNode | MiddlewareNode


# Canonicalization rules, applied in order by canonicalize_prefix()
_REGEX_LITERAL = re.compile(r"^/(?P<body>.*)/[a-z]*$")
_CATCH_ALL_TAIL = re.compile(r"/?\(\?P<path>\.\*\)$")
_OPTIONAL_TRAILING_SLASH = re.compile(r"(\\/|/)\?(\(\?=(\\/|/)\|\$\))?$")
_NAMED_GROUP = re.compile(r"\(\?P<(?P<name>\w+)>(?:[^()]|\([^()]*\))*\)")
_ESCAPED = re.compile(r"\\([/.\-])")
_REPEATED_SLASH = re.compile(r"/{2,}")


def canonicalize_prefix(pattern: str) -> str:
    """Turn a mount prefix or its matching regex into a literal path fragment.

    Rules:
    1. A ``/.../flags`` regex literal is unwrapped; ``^`` and ``$`` anchors are stripped.
    2. A trailing catch-all group ``/(?P<path>.*)`` is dropped.
    3. An optional trailing slash group (``\\/?(?=\\/|$)`` or ``/?``) is dropped.
    4. Named groups ``(?P<name>...)`` become ``{name}``.
    5. ``\\/`` and ``\\.`` are unescaped.
    6. Repeated slashes collapse; the result has a leading slash and no
       trailing slash, and the root prefix is the empty string.

    Literal prefixes such as ``/api/`` pass through rules 5-6 only.
    """
    text = pattern.strip()

    literal = _REGEX_LITERAL.match(text)
    if literal and (literal.group("body").startswith("^") or literal.group("body").endswith("$")):
        text = literal.group("body")

    if text.startswith("^"):
        text = text[1:]
    if text.endswith("$") and not text.endswith("\\$"):
        text = text[:-1]

    text = _CATCH_ALL_TAIL.sub("", text)
    text = _OPTIONAL_TRAILING_SLASH.sub("", text)
    text = _NAMED_GROUP.sub(lambda m: "{" + m.group("name") + "}", text)
    text = _ESCAPED.sub(r"\1", text)
    text = _REPEATED_SLASH.sub("/", text)

    text = text.rstrip("/")
    if text and not text.startswith("/"):
        text = "/" + text
    return text


def join_paths(prefix: str, path: str) -> str:
    """Join a canonical prefix and a route path with exactly one slash."""
    if not prefix:
        return path or "/"
    if not path:
        return prefix
    return prefix.rstrip("/") + "/" + path.lstrip("/")
