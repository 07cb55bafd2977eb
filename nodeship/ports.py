import errno
import random
import socket
from typing import Callable

MIN_PORT = 1
MAX_PORT = 65535
RANDOM_PORT_MIN = 1024


def validate_port(value) -> int | None:
    """:return: the port as int, or None if it is not in 1-65535"""
    try:
        port = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return port if MIN_PORT <= port <= MAX_PORT else None


def is_port_in_use(port: int, host: str = "") -> bool:
    """Only EADDRINUSE counts as in use; any other bind failure reports free."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
        sock.listen(1)
    except OSError as e:
        return e.errno == errno.EADDRINUSE
    finally:
        sock.close()
    return False


def get_available_port(port: int, ask: Callable[[int], int]) -> int:
    """Keeps asking for another port while ``port`` is taken.

    :param ask: called with the busy port, returns a validated replacement
    """
    while is_port_in_use(port):
        port = ask(port)
    return port


def get_random_port() -> int:
    return random.randint(RANDOM_PORT_MIN, MAX_PORT)


def find_free_port() -> int:
    port = get_random_port()
    while is_port_in_use(port):
        port = get_random_port()
    return port
