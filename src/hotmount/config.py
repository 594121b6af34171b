"""Runtime settings, built once by the CLI and passed down explicitly."""

import logging
from dataclasses import dataclass, field

from hotmount.deps.tracker import DEFAULT_VENDOR_DIRS

DEFAULT_PORT = 5000
DEFAULT_HOST = "127.0.0.1"
DEFAULT_ROUTER_NAMES = ("router", "app")
DEFAULT_DEBOUNCE_MS = 200


@dataclass(frozen=True)
class Settings:
    """Configuration for one hotmount process."""

    target: str
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    public_host: str = "localhost"  # Hostname shown in printed URLs
    router_names: tuple[str, ...] = DEFAULT_ROUTER_NAMES
    vendor_dirs: frozenset[str] = field(default_factory=lambda: DEFAULT_VENDOR_DIRS)
    cors: bool = True
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    watch_retry_delay: float = 1.0
    log_level: int = logging.INFO

    def base_url(self, port: int) -> str:
        return f"http://{self.public_host}:{port}"
