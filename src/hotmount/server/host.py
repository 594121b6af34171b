"""Per-generation host application wrapping the mounted router."""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.routing import Mount, Router
from starlette.types import ASGIApp, Receive, Scope, Send

from hotmount import __version__
from hotmount.routes.tree import HttpMethod

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Unknown handler or waiting for changes…"

FailureCallback = Callable[[BaseException], None]


class RouterNotFoundError(Exception):
    """Raised when the loaded module exposes none of the expected router names."""

    def __init__(self, module_name: str, names: tuple[str, ...]):
        self.module_name = module_name
        self.names = names
        super().__init__(
            f"Module {module_name!r} exposes no router (looked for: {', '.join(names)})"
        )


def resolve_router(module: Any, names: tuple[str, ...]) -> Any:
    """Pick the first attribute of the module that looks like a router.

    Raises:
        RouterNotFoundError: If no candidate exposes a ``routes`` list.
    """
    for name in names:
        candidate = getattr(module, name, None)
        if candidate is not None and hasattr(candidate, "routes"):
            return candidate
    raise RouterNotFoundError(getattr(module, "__name__", "?"), names)


async def _fallback() -> PlainTextResponse:
    return PlainTextResponse(FALLBACK_MESSAGE)


def build_host_app(router: Any | None = None, *, cors: bool = True) -> FastAPI:
    """Build the app a generation serves: CORS, the router, then the fallback."""
    app = FastAPI(
        title="hotmount",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    if cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    if router is not None:
        if isinstance(router, APIRouter):
            app.include_router(router)
        elif isinstance(router, Router):
            app.router.routes.extend(router.routes)
        else:
            # Whole applications keep their own middleware and 404 handling
            app.router.routes.append(Mount("", app=router))

    app.add_api_route(
        "/{path:path}",
        _fallback,
        methods=[method.value for method in HttpMethod if method is not HttpMethod.CONNECT],
        include_in_schema=False,
    )
    return app


class FailureReporter:
    """ASGI wrapper reporting exceptions that escape the app while serving.

    The exception is re-raised so the server still answers with a 500.
    """

    def __init__(self, app: ASGIApp, on_failure: FailureCallback):
        self.app = app
        self.on_failure = on_failure

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await self.app(scope, receive, send)
        except Exception as e:
            if scope["type"] != "lifespan":
                logger.debug(f"Request failed in mounted app: {e!r}")
                self.on_failure(e)
            raise


class SwappableApp:
    """ASGI indirection so a listening server can switch apps mid-generation."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.app(scope, receive, send)
