"""Hotmount - hot-reloading development server for Starlette/FastAPI routers."""

__version__ = "0.1.0"
