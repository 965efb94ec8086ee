"""
Transfer Session (server side)

One session serves one accepted download on its own data-channel port.

States:
```
OPEN --GET--> OPEN --GET--> ... --CLOSE--> CLOSED
  |                                          ^
  +------ idle_timeout expired --------------+   (only when configured)
```

Entering CLOSED releases the socket (and with it the port) and the file
handle. Without an idle timeout a session whose client disappears stays
OPEN for the life of the process.
"""

import logging
from pathlib import Path
from typing import Optional

from ..file.storage import FileStore, read_block
from .protocol import (
    BLOCK_SIZE, ChunkClose, ChunkCloseOk, ChunkData, ChunkGet,
    MalformedMessage, parse_chunk_request,
)
from .transport import Address, DatagramEndpoint

logger = logging.getLogger(__name__)


class TransferSession:
    """
    Answers GET and CLOSE requests for a single file.

    The session owns its endpoint and closes it when it finishes.
    """

    def __init__(self, endpoint: DatagramEndpoint, store: FileStore,
                 path: Path, filename: str,
                 peer: Optional[Address] = None,
                 max_block_size: int = BLOCK_SIZE,
                 idle_timeout: Optional[float] = None,
                 pin_peer: bool = False):
        """
        Args:
            endpoint: Bound data-channel socket (owned by the session)
            store: Store the file is read through
            path: Resolved file to serve
            filename: Name the client asked for (echoed in responses)
            peer: Address that sent the DOWNLOAD
            max_block_size: Most bytes returned for one GET
            idle_timeout: Abandon the session after this many silent seconds
            pin_peer: Only answer `peer`, ignore every other address
        """
        self.endpoint = endpoint
        self.store = store
        self.path = path
        self.filename = filename
        self.peer = peer
        self.max_block_size = max_block_size
        self.idle_timeout = idle_timeout
        self.pin_peer = pin_peer and peer is not None

        self.port = endpoint.local_address[1]
        self.closed = False
        self.abandoned = False

        # Statistics
        self.chunks_served = 0
        self.bytes_sent = 0

    async def run(self):
        """Serve requests until CLOSE (or idle expiry), then release resources."""
        logger.info(f"Session for {self.filename} open on port {self.port}")
        try:
            async with self.store.open(self.path) as f:
                while not self.closed:
                    received = await self.endpoint.receive(timeout=self.idle_timeout)
                    if received is None:
                        logger.warning(
                            f"Session for {self.filename} on port {self.port} idle for "
                            f"{self.idle_timeout}s, abandoning"
                        )
                        self.abandoned = True
                        break

                    data, addr = received
                    await self._handle(f, data, addr)
        finally:
            self.closed = True
            self.endpoint.close()
            logger.info(
                f"Session for {self.filename} on port {self.port} closed "
                f"({self.chunks_served} chunks, {self.bytes_sent:,} bytes)"
            )

    async def _handle(self, f, data: bytes, addr: Address):
        """Handle one datagram on the data channel."""
        if self.pin_peer and addr != self.peer:
            logger.debug(f"Ignoring {addr} on port {self.port}, session belongs to {self.peer}")
            return

        try:
            request = parse_chunk_request(data)
        except MalformedMessage as e:
            logger.debug(f"Dropped malformed request from {addr}: {e}")
            return

        if request.filename != self.filename:
            logger.debug(f"Dropped request for {request.filename} on {self.filename} session")
            return

        if isinstance(request, ChunkClose):
            self.endpoint.send(ChunkCloseOk(self.filename).to_bytes(), addr)
            self.closed = True
        elif isinstance(request, ChunkGet):
            await self._handle_get(f, request, addr)

    async def _handle_get(self, f, request: ChunkGet, addr: Address):
        length = min(request.length, self.max_block_size)
        try:
            block = await read_block(f, request.start, length)
        except OSError as e:
            # No answer; the client retransmits
            logger.warning(f"Read failed for {self.filename} at {request.start}: {e}")
            return

        if not block:
            logger.debug(f"Nothing to send for {self.filename} at {request.start}")
            return

        response = ChunkData.for_block(self.filename, request.start, block)
        self.endpoint.send(response.to_bytes(), addr)
        self.chunks_served += 1
        self.bytes_sent += len(block)
