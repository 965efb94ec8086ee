"""
Datagram Transport

Thin asyncio wrapper around a bound UDP socket.

Design Note: asyncio's DatagramProtocol is callback based. The transfer
code is written as straight-line request/response loops, so received
datagrams are pushed into a queue and consumed with `receive(timeout)`.
Nothing here retries or reorders; delivery is best effort.
"""

import asyncio
import logging
import socket
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

Address = Tuple[str, int]


class DatagramEndpoint(asyncio.DatagramProtocol):
    """
    One bound UDP socket.

    Provides:
    - send(data, addr): fire and forget
    - receive(timeout): next datagram, or None when the timeout expires
    """

    def __init__(self):
        self.transport: Optional[asyncio.DatagramTransport] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def connection_made(self, transport: asyncio.DatagramTransport):
        """Called when the UDP socket is ready."""
        self.transport = transport
        logger.debug(f"Endpoint bound on {transport.get_extra_info('sockname')}")

    def connection_lost(self, exc):
        """Called when the socket is closed."""
        self._closed = True
        # Wake up anyone blocked in receive()
        self._queue.put_nowait(None)

    def datagram_received(self, data: bytes, addr: Address):
        self._queue.put_nowait((data, addr))

    def error_received(self, exc):
        """Called when a send or receive operation fails (e.g. ICMP port unreachable)."""
        logger.warning(f"Datagram error: {exc}")

    @property
    def local_address(self) -> Address:
        """Address this endpoint is bound to."""
        if self.transport is None:
            raise ConnectionError("Endpoint not bound")
        return self.transport.get_extra_info('sockname')[:2]

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, data: bytes, addr: Address):
        """Send a datagram to an address."""
        if self.transport is None or self._closed:
            raise ConnectionError("Endpoint closed")
        self.transport.sendto(data, addr)

    async def receive(self, timeout: Optional[float] = None) -> Optional[Tuple[bytes, Address]]:
        """
        Wait for the next datagram.

        Args:
            timeout: Seconds to wait, or None to wait forever

        Returns:
            (data, addr), or None if the timeout expired

        Raises:
            ConnectionError: if the endpoint is (or gets) closed
        """
        if self._closed and self._queue.empty():
            raise ConnectionError("Endpoint closed")

        try:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

        if item is None:
            raise ConnectionError("Endpoint closed")
        return item

    def close(self):
        """Close the socket, releasing its port."""
        if self.transport is not None and not self._closed:
            self.transport.close()
        self._closed = True


async def open_endpoint(host: str = '0.0.0.0', port: int = 0,
                        endpoint_factory: Callable[[], DatagramEndpoint] = DatagramEndpoint
                        ) -> DatagramEndpoint:
    """
    Bind a new UDP endpoint.

    Args:
        host: Local address to bind
        port: Local port, 0 for an ephemeral port
        endpoint_factory: DatagramEndpoint subclass to instantiate

    Raises:
        OSError: if the address is already in use
    """
    loop = asyncio.get_running_loop()
    _, endpoint = await loop.create_datagram_endpoint(
        endpoint_factory,
        local_addr=(host, port),
        family=socket.AF_INET,
    )
    return endpoint


async def resolve_address(host: str, port: int) -> Address:
    """Resolve a hostname to an IPv4 (ip, port) pair."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, family=socket.AF_INET,
                                   type=socket.SOCK_DGRAM)
    if not infos:
        raise OSError(f"Could not resolve {host}")
    return infos[0][4][:2]
