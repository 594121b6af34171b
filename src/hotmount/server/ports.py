"""Port checks and listener binding."""

import errno
import logging
import socket

logger = logging.getLogger(__name__)

MAX_PORT = 65535


class PortExhaustedError(Exception):
    """Raised when no free port exists at or above the preferred one."""

    def __init__(self, host: str, preferred: int):
        self.host = host
        self.preferred = preferred
        super().__init__(f"No free port on {host} at or above {preferred}")


class PortUnavailableError(Exception):
    """Raised when binding a specific port fails."""

    def __init__(self, host: str, port: int, reason: str):
        self.host = host
        self.port = port
        self.reason = reason
        super().__init__(f"Cannot bind {host}:{port}: {reason}")


def _family(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def is_port_free(host: str, port: int) -> bool:
    """Check a port by binding a scratch socket to it."""
    with socket.socket(_family(host), socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def find_free_port(host: str, preferred: int) -> int:
    """Scan upward from the preferred port for one that is free.

    Port 0 is returned as-is; the OS picks an ephemeral port at bind time.

    Raises:
        PortExhaustedError: If every port up to 65535 is taken.
    """
    if preferred == 0:
        return 0

    for port in range(preferred, MAX_PORT + 1):
        if is_port_free(host, port):
            if port != preferred:
                logger.info(f"Port {preferred} is busy, using {port}")
            return port

    raise PortExhaustedError(host, preferred)


def bind_listener(host: str, port: int) -> socket.socket:
    """Bind a listening socket, failing fast if the port is taken.

    Raises:
        PortUnavailableError: If the bind fails for any reason.
    """
    sock = socket.socket(_family(host), socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        reason = "address already in use" if e.errno == errno.EADDRINUSE else str(e)
        raise PortUnavailableError(host, port, reason) from e

    sock.set_inheritable(True)
    logger.debug(f"Bound {host}:{sock.getsockname()[1]}")
    return sock
