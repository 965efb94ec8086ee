"""
Data Channel Port Allocator

Design Decision: Port Bookkeeping
=================================

Options Considered:
1. In-process registry of leased ports (set + lock)
   - Knows nothing about other processes using the range
2. Let the OS pick (bind to port 0)
   - Always works, but data ports end up outside the agreed range
3. Probe random ports in the range with a throwaway bind

Decision: Probe-then-release
- The OS bind is the single source of truth; no shared state
- A probed port is released immediately and re-bound by the session.
  Someone can grab it in between; the caller treats that bind failure
  as "no port available" instead of probing again.
"""

import logging
import random
import socket
from typing import Optional

from .protocol import PORT_PROBE_ATTEMPTS, PORT_RANGE

logger = logging.getLogger(__name__)


class PortAllocator:
    """Picks a currently unused UDP port in a fixed range."""

    def __init__(self, host: str = '0.0.0.0',
                 port_range: tuple = PORT_RANGE,
                 attempts: int = PORT_PROBE_ATTEMPTS,
                 rng: Optional[random.Random] = None):
        """
        Args:
            host: Address the data channels will bind to
            port_range: (first, last) ports, last excluded
            attempts: Probes before giving up
            rng: Random source (injectable for tests)
        """
        low, high = port_range
        if not 0 < low < high <= 65536:
            raise ValueError(f"Invalid port range: {port_range}")

        self.host = host
        self.port_range = (low, high)
        self.attempts = attempts
        self.rng = rng or random.Random()

    def _probe(self, port: int) -> bool:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, port))
            return True
        except OSError:
            return False
        finally:
            sock.close()

    def allocate(self) -> Optional[int]:
        """
        Find a free port.

        Returns:
            A port that was free at probe time, or None if every probe failed
        """
        low, high = self.port_range
        for _ in range(self.attempts):
            port = self.rng.randrange(low, high)
            if self._probe(port):
                return port
            logger.debug(f"Port {port} busy")

        logger.warning(f"No free port found in {low}-{high} after {self.attempts} attempts")
        return None
