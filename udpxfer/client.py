"""
File Client

Owns the client socket and runs batches of downloads against one server.
"""

import logging
from typing import List, Optional

from .config import Config
from .transfer import (
    DatagramEndpoint, DownloadResult, FileDownloader, RetryingRequester,
    open_endpoint, resolve_address,
)
from .transfer.downloader import ProgressCallback

logger = logging.getLogger(__name__)


class FileClient:
    """
    Downloads files from a server.

    Usage:
        async with FileClient('example.org', 9000, config) as client:
            results = await client.download_all(['a.txt', 'b.bin'])
    """

    def __init__(self, host: str, port: int, config: Config = None):
        self.host = host
        self.port = port
        self.config = config or Config()
        self.config.validate()

        self.endpoint: Optional[DatagramEndpoint] = None
        self.downloader: Optional[FileDownloader] = None

    async def connect(self):
        """Resolve the server and bind a local socket."""
        server = await resolve_address(self.host, self.port)
        self.endpoint = await open_endpoint('0.0.0.0', 0)

        requester = RetryingRequester(
            self.endpoint,
            base_timeout=self.config.base_timeout,
            max_retries=self.config.max_retries,
        )
        self.downloader = FileDownloader(
            requester,
            server,
            output_dir=self.config.output_dir,
            block_size=self.config.block_size,
            atomic=self.config.atomic_downloads,
        )
        logger.debug(f"Client bound on {self.endpoint.local_address}, server {server}")

    def close(self):
        if self.endpoint:
            self.endpoint.close()
            self.endpoint = None

    async def __aenter__(self) -> 'FileClient':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    async def download(self, filename: str, progress_callback: ProgressCallback = None):
        """Download one file; see FileDownloader.download for errors raised."""
        if self.downloader is None:
            raise RuntimeError("Client not connected")
        return await self.downloader.download(filename, progress_callback)

    async def download_all(self, filenames: List[str],
                           progress_callback: ProgressCallback = None) -> List[DownloadResult]:
        """Download every file in order; failures don't stop the batch."""
        if self.downloader is None:
            raise RuntimeError("Client not connected")
        return await self.downloader.download_all(filenames, progress_callback)
