"""
File Server - Main Controller

Orchestrates the server-side components:
- FileStore for the served directory
- PortAllocator for data channels
- Dispatcher on the control channel, spawning one TransferSession per download
"""

import asyncio
import logging
from typing import Optional

from .config import Config
from .file import FileStore
from .transfer import Dispatcher, PortAllocator, open_endpoint

logger = logging.getLogger(__name__)


class FileServer:
    """
    A complete file server.

    - start(): bind the control channel and begin dispatching
    - stop(): close the control channel and every live session
    """

    def __init__(self, config: Config = None):
        self.config = config or Config()
        self.config.validate()

        self.store = FileStore(self.config.root_dir)
        self.allocator = PortAllocator(
            host=self.config.host,
            port_range=self.config.port_range,
            attempts=self.config.port_probe_attempts,
        )
        self.dispatcher: Optional[Dispatcher] = None
        self._serve_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    @property
    def address(self):
        """Bound (host, port) of the control channel."""
        if self.dispatcher is None:
            raise RuntimeError("Server not started")
        return self.dispatcher.endpoint.local_address

    async def start(self):
        """Bind the control channel and start serving."""
        if self.is_running:
            return

        endpoint = await open_endpoint(self.config.host, self.config.port)
        self.dispatcher = Dispatcher(
            endpoint=endpoint,
            store=self.store,
            allocator=self.allocator,
            max_block_size=self.config.block_size,
            max_sessions=self.config.max_sessions,
            idle_timeout=self.config.session_idle_timeout,
            pin_peer=self.config.pin_peer,
        )
        self._serve_task = asyncio.create_task(self.dispatcher.serve_forever())

        logger.info(f"File server started on {self.address}")
        logger.info(f"  Serving: {self.store.root}")
        logger.info(f"  Data ports: {self.config.port_range_start}-{self.config.port_range_end}")

    async def stop(self):
        """Stop the server."""
        if self.dispatcher is None:
            return

        logger.info("Stopping file server...")
        await self.dispatcher.stop()
        if self._serve_task:
            await self._serve_task
            self._serve_task = None

        logger.info("File server stopped")

    async def wait_closed(self):
        """Block until the server stops."""
        if self._serve_task:
            await self._serve_task

    def get_stats(self) -> dict:
        """Get server statistics."""
        stats = {'running': self.is_running, 'root': str(self.store.root)}
        if self.dispatcher:
            stats.update(self.dispatcher.get_stats())
        return stats
