"""Port allocation for branch instances."""

import logging
from typing import Optional, Set

from zvpg.core.errors import (
    NoPortsAvailableError,
    PortOutOfRangeError,
    PortUnavailableError,
)
from zvpg.infrastructure.port_probe import PortProbe, is_port_in_use

logger = logging.getLogger(__name__)


class PortAllocator:
    """Finds free ports in a configured range.

    The live probe is the only authority on whether a port is free; there is
    no registry shared between invocations. ``claim`` additionally remembers
    ports handed out by this allocator so that two claims in the same process
    never return the same port.
    """

    def __init__(self, start: int, end: int, probe: Optional[PortProbe] = None):
        """Initialize the allocator.

        Args:
            start: First port of the range (inclusive)
            end: Last port of the range (inclusive)
            probe: Returns True when a port is in use
        """
        if start > end:
            raise ValueError(f"Invalid port range {start}-{end}")
        self.start = start
        self.end = end
        self.probe = probe or is_port_in_use
        self._claimed: Set[int] = set()

    def in_range(self, port: int) -> bool:
        return self.start <= port <= self.end

    def is_available(self, port: int) -> bool:
        """Check whether a port is free right now."""
        return port not in self._claimed and not self.probe(port)

    def allocate(self, preferred: Optional[int] = None) -> int:
        """Pick a free port without reserving it.

        Args:
            preferred: Port to use if possible

        Returns:
            The preferred port, or the lowest free port of the range

        Raises:
            PortOutOfRangeError: If ``preferred`` lies outside the range
            PortUnavailableError: If ``preferred`` is in use
            NoPortsAvailableError: If every port of the range is in use
        """
        if preferred is not None:
            if not self.in_range(preferred):
                raise PortOutOfRangeError(preferred, self.start, self.end)
            if not self.is_available(preferred):
                raise PortUnavailableError(preferred)
            return preferred

        for port in range(self.start, self.end + 1):
            if self.is_available(port):
                logger.debug(f"Allocated port {port}")
                return port

        raise NoPortsAvailableError(self.start, self.end)

    def claim(self, preferred: Optional[int] = None) -> int:
        """Allocate a port and keep later allocations in this process off it."""
        port = self.allocate(preferred)
        self._claimed.add(port)
        return port

    def release(self, port: int) -> None:
        """Forget a claimed port."""
        self._claimed.discard(port)
