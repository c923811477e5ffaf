"""Liveness probe for TCP ports."""

import socket
from typing import Callable

PortProbe = Callable[[int], bool]


def is_port_in_use(port: int, host: str = "127.0.0.1") -> bool:
    """Check whether something already holds a TCP port.

    A failed bind means another process is listening (or holds the address),
    which is the authoritative answer regardless of any recorded attribute.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
            return False
        except OSError:
            return True


def make_port_probe(host: str) -> PortProbe:
    """Bind ``is_port_in_use`` to a host."""

    def probe(port: int) -> bool:
        return is_port_in_use(port, host)

    return probe
