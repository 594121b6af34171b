"""Pytest configuration and fixtures."""

import sys
import textwrap
from collections.abc import Callable, Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

from hotmount.config import Settings

ROUTER_V1 = '''
from fastapi import APIRouter

router = APIRouter()


@router.get("/users")
async def list_users():
    return []


@router.post("/users")
async def create_user():
    return {"created": True}


@router.get("/users/{user_id}")
async def get_user(user_id: int):
    return {"id": user_id}
'''

ROUTER_V2 = '''
from fastapi import APIRouter

router = APIRouter()


@router.get("/users")
async def list_users():
    return []


@router.get("/users/{user_id}")
async def get_user(user_id: int):
    return {"id": user_id}


@router.delete("/users/{user_id}")
async def delete_user(user_id: int):
    return {"deleted": user_id}
'''

BROKEN_ROUTER = '''
from fastapi import APIRouter

router = APIRouter()

raise RuntimeError("router construction failed")
'''

FAILING_ROUTE = '''
from fastapi import APIRouter

router = APIRouter()


@router.get("/ok")
async def ok():
    return {"ok": True}


@router.get("/boom")
async def boom():
    raise ValueError("handler exploded")
'''


@pytest.fixture(autouse=True)
def isolate_imports(tmp_path_factory: pytest.TempPathFactory) -> Iterator[None]:
    """Undo sys.path and sys.meta_path changes and forget modules loaded from temp dirs."""
    saved_path = list(sys.path)
    saved_meta_path = list(sys.meta_path)
    temp_root = tmp_path_factory.getbasetemp().resolve()
    yield
    sys.path[:] = saved_path
    sys.meta_path[:] = saved_meta_path
    for name, module in list(sys.modules.items()):
        file_attr = getattr(module, "__file__", None)
        if file_attr and Path(file_attr).resolve().is_relative_to(temp_root):
            del sys.modules[name]


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a dedented source file relative to tmp_path."""

    def _write(relative: str, source: str) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip())
        return path

    return _write


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Settings suitable for tests: ephemeral port, short delays."""

    def _make(target: str | Path, **overrides) -> Settings:
        values = {
            "target": str(target),
            "port": 0,
            "debounce_ms": 50,
            "watch_retry_delay": 0.01,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def sources() -> SimpleNamespace:
    """Router module sources shared by the reload tests."""
    return SimpleNamespace(
        v1=ROUTER_V1,
        v2=ROUTER_V2,
        broken=BROKEN_ROUTER,
        failing=FAILING_ROUTE,
    )
