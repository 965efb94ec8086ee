"""
Control Channel Dispatcher

Listens on the well-known port and turns DOWNLOAD requests into transfer
sessions.

Per datagram:
```
receive ─> parse ─┬─ malformed ──────────────> drop (no answer)
                  └─ DOWNLOAD name
                       ├─ not served ────────> ERR name NOT_FOUND
                       ├─ no port / at cap ──> ERR name NO_PORT_AVAILABLE
                       └─ bind data port ────> OK name SIZE n PORT p
                                               + start session task
```

Design Note: the data socket is bound *before* OK goes out. If the probed
port was taken in the meantime the client gets NO_PORT_AVAILABLE instead
of an OK pointing at a port nobody answers on.

The listener never waits on a session: each one runs as its own task and
the loop goes straight back to receiving.
"""

import asyncio
import logging
from typing import Dict, Optional, Set, Tuple

from ..file.storage import FileStore
from .ports import PortAllocator
from .protocol import (
    BLOCK_SIZE, ControlErr, ControlOk, ControlResponse, ErrorReason,
    MalformedMessage, parse_control_request,
)
from .session import TransferSession
from .transport import Address, DatagramEndpoint, open_endpoint

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Control-channel loop.

    Statistics:
    - downloads_accepted / downloads_refused
    - dropped: datagrams that were not a valid request
    """

    def __init__(self, endpoint: DatagramEndpoint, store: FileStore,
                 allocator: PortAllocator,
                 max_block_size: int = BLOCK_SIZE,
                 max_sessions: Optional[int] = None,
                 idle_timeout: Optional[float] = None,
                 pin_peer: bool = False):
        """
        Args:
            endpoint: Bound control-channel socket
            store: Files being served
            allocator: Source of data-channel ports
            max_block_size: Passed to every session
            max_sessions: Refuse new downloads while this many are live (None = no cap)
            idle_timeout: Passed to every session (None = sessions wait forever)
            pin_peer: Passed to every session
        """
        self.endpoint = endpoint
        self.store = store
        self.allocator = allocator
        self.max_block_size = max_block_size
        self.max_sessions = max_sessions
        self.idle_timeout = idle_timeout
        self.pin_peer = pin_peer

        self._running = False
        self._tasks: Set[asyncio.Task] = set()
        # (peer, filename) -> session that has not served anything yet
        self._fresh: Dict[Tuple[Address, str], TransferSession] = {}

        # Statistics
        self.downloads_accepted = 0
        self.downloads_refused = 0
        self.dropped = 0
        self.chunks_served = 0
        self.bytes_sent = 0

    @property
    def active_sessions(self) -> int:
        return len(self._tasks)

    async def serve_forever(self):
        """Receive and dispatch control requests until stopped."""
        self._running = True
        logger.info(f"Listening for downloads on {self.endpoint.local_address}")

        while self._running:
            try:
                data, addr = await self.endpoint.receive()
            except ConnectionError:
                break

            try:
                await self.dispatch(data, addr)
            except Exception as e:
                logger.error(f"Error handling request from {addr}: {e}")

    async def dispatch(self, data: bytes, addr: Address) -> Optional[ControlResponse]:
        """
        Handle one control-channel datagram.

        Returns:
            The response sent, or None if the datagram was dropped
        """
        try:
            request = parse_control_request(data)
        except MalformedMessage as e:
            self.dropped += 1
            logger.debug(f"Dropped datagram from {addr}: {e}")
            return None

        filename = request.filename
        response = await self._accept(filename, addr)

        if isinstance(response, ControlErr):
            self.downloads_refused += 1
            logger.warning(f"Refused {filename} for {addr}: {response.reason.value}")

        self.endpoint.send(response.to_bytes(), addr)
        return response

    async def _accept(self, filename: str, addr: Address) -> ControlResponse:
        path = await self.store.resolve(filename)
        if path is None:
            return ControlErr(filename, ErrorReason.NOT_FOUND)

        try:
            size = await self.store.size(path)
        except OSError:
            return ControlErr(filename, ErrorReason.NOT_FOUND)

        # Our OK was lost and the client asked again: point it at the same session
        fresh = self._fresh.get((addr, filename))
        if fresh is not None and not fresh.closed and fresh.chunks_served == 0:
            logger.debug(f"Repeating OK for {filename} to {addr}")
            return ControlOk(filename, size, fresh.port)

        if self.max_sessions is not None and self.active_sessions >= self.max_sessions:
            logger.debug(f"Session cap of {self.max_sessions} reached")
            return ControlErr(filename, ErrorReason.NO_PORT_AVAILABLE)

        port = self.allocator.allocate()
        if port is None:
            return ControlErr(filename, ErrorReason.NO_PORT_AVAILABLE)

        try:
            session_endpoint = await open_endpoint(self.allocator.host, port)
        except OSError as e:
            logger.debug(f"Lost port {port} between probe and bind: {e}")
            return ControlErr(filename, ErrorReason.NO_PORT_AVAILABLE)

        session = TransferSession(
            endpoint=session_endpoint,
            store=self.store,
            path=path,
            filename=filename,
            peer=addr,
            max_block_size=self.max_block_size,
            idle_timeout=self.idle_timeout,
            pin_peer=self.pin_peer,
        )
        self._start_session(session, addr)

        self.downloads_accepted += 1
        logger.info(f"Serving {filename} ({size:,} bytes) to {addr} on port {port}")
        return ControlOk(filename, size, port)

    def _start_session(self, session: TransferSession, addr: Address):
        key = (addr, session.filename)
        self._fresh[key] = session

        task = asyncio.create_task(session.run())
        self._tasks.add(task)

        def on_done(t: asyncio.Task):
            self._tasks.discard(t)
            if self._fresh.get(key) is session:
                del self._fresh[key]
            self.chunks_served += session.chunks_served
            self.bytes_sent += session.bytes_sent
            if not t.cancelled() and t.exception() is not None:
                logger.error(f"Session for {session.filename} failed: {t.exception()}")

        task.add_done_callback(on_done)

    async def stop(self):
        """Stop listening and cancel every live session."""
        self._running = False
        self.endpoint.close()

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> dict:
        """Get dispatcher statistics."""
        return {
            'downloads_accepted': self.downloads_accepted,
            'downloads_refused': self.downloads_refused,
            'dropped': self.dropped,
            'active_sessions': self.active_sessions,
            'chunks_served': self.chunks_served,
            'bytes_sent': self.bytes_sent,
        }
