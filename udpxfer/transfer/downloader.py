"""
File Downloader (client side)

Design Decision: Download Strategy
==================================

Options Considered:
1. Sliding window of outstanding GETs
   - Faster on high-latency links
   - Needs reordering, duplicate suppression, window sizing
2. One outstanding request at a time (stop-and-wait per chunk)
   - Responses can never arrive out of order
   - Throughput bounded by one chunk per round trip

Decision: One outstanding request
- The whole client is a straight line: handshake, chunk loop, close
- Reliability comes entirely from RetryingRequester

Download Flow:
1. DOWNLOAD name on the control port -> OK (size, data port) or ERR
2. GET [received, min(received + BLOCK_SIZE, size) - 1] until received == size
3. CLOSE on the data port -> CLOSE_OK

The offset only ever advances by the bytes a response actually carried,
and a response is only accepted for the exact offset requested, so a late
duplicate of an earlier chunk can never be written twice.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..file.storage import DownloadTarget
from .protocol import (
    BLOCK_SIZE, ChunkClose, ChunkCloseOk, ChunkData, ChunkGet, ControlErr,
    ControlOk, ControlResponse, DownloadRequest, ErrorReason, MalformedMessage,
    is_valid_filename, parse_chunk_response, parse_control_response,
)
from .retry import RequestTimeoutError, RetryingRequester
from .transport import Address

logger = logging.getLogger(__name__)


class TransferRefused(Exception):
    """The server answered a DOWNLOAD with ERR."""

    def __init__(self, filename: str, reason: ErrorReason):
        self.filename = filename
        self.reason = reason
        super().__init__(f"{filename}: {reason.value}")


@dataclass
class DownloadProgress:
    """Track download progress of one file."""
    file_name: str
    file_size: int = 0
    bytes_downloaded: int = 0
    chunks: int = 0
    phase: str = 'handshake'  # 'handshake', 'downloading', 'closing', 'complete', 'failed'


# Progress callback type
ProgressCallback = Callable[[DownloadProgress], None]


@dataclass
class DownloadResult:
    """Outcome of one file in a batch."""
    filename: str
    status: str  # 'complete', 'refused', 'failed'
    size: int = 0
    bytes_received: int = 0
    path: Optional[Path] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == 'complete'


def next_range(received: int, size: int, block_size: int = BLOCK_SIZE) -> tuple:
    """The (start, end) byte range to request next, both inclusive."""
    return received, min(received + block_size - 1, size - 1)


class FileDownloader:
    """
    Downloads files from one server, one at a time.

    The requester (and its socket) is shared by every download in a batch.
    """

    def __init__(self, requester: RetryingRequester, server: Address,
                 output_dir: Path = Path('.'),
                 block_size: int = BLOCK_SIZE,
                 atomic: bool = False):
        """
        Args:
            requester: Retrying request client bound to a local socket
            server: (ip, port) of the server's control channel
            output_dir: Where downloaded files are written
            block_size: Bytes requested per GET
            atomic: Write to a .part file and rename on success
        """
        if block_size <= 0:
            raise ValueError("block_size must be positive")

        self.requester = requester
        self.server = server
        self.output_dir = Path(output_dir)
        self.block_size = block_size
        self.atomic = atomic

        # Statistics
        self.files_downloaded = 0
        self.total_bytes = 0

    def local_path(self, filename: str) -> Path:
        """
        Where `filename` is written.

        Raises:
            ValueError: if the name would land outside output_dir
        """
        out = self.output_dir.resolve()
        path = (out / filename).resolve()
        if Path(filename).is_absolute() or out not in path.parents:
            raise ValueError(f"{filename!r} would be written outside {out}")
        return path

    async def handshake(self, filename: str) -> ControlOk:
        """
        Ask the control channel for `filename`.

        Raises:
            TransferRefused: if the server answered ERR
            RequestTimeoutError: if the server never answered
        """
        def match(data: bytes) -> Optional[ControlResponse]:
            try:
                response = parse_control_response(data)
            except MalformedMessage:
                return None
            return response if response.filename == filename else None

        response = await self.requester.request(
            self.server, DownloadRequest(filename).to_bytes(), match
        )
        if isinstance(response, ControlErr):
            raise TransferRefused(filename, response.reason)
        return response

    async def fetch_chunk(self, data_channel: Address, filename: str,
                          start: int, end: int) -> bytes:
        """Request one byte range and return the data the server sent for it."""
        def match(data: bytes) -> Optional[ChunkData]:
            try:
                response = parse_chunk_response(data)
            except MalformedMessage:
                return None
            if (isinstance(response, ChunkData) and response.filename == filename
                    and response.start == start and response.end <= end):
                return response
            return None

        response = await self.requester.request(
            data_channel, ChunkGet(filename, start, end).to_bytes(), match
        )
        return response.data

    async def close_transfer(self, data_channel: Address, filename: str):
        """Tell the session we are done and wait for CLOSE_OK."""
        def match(data: bytes) -> Optional[ChunkCloseOk]:
            try:
                response = parse_chunk_response(data)
            except MalformedMessage:
                return None
            if isinstance(response, ChunkCloseOk) and response.filename == filename:
                return response
            return None

        await self.requester.request(
            data_channel, ChunkClose(filename).to_bytes(), match
        )

    async def download(self, filename: str,
                       progress_callback: ProgressCallback = None) -> Path:
        """
        Download one file.

        Returns:
            Path of the written file

        Raises:
            ValueError: if the name can't be sent in the wire format or
                would be written outside output_dir
            TransferRefused: if the server answered ERR (nothing is written)
            RequestTimeoutError: if any exchange ran out of retries
        """
        if not is_valid_filename(filename):
            raise ValueError(f"Invalid filename: {filename!r}")
        local_path = self.local_path(filename)

        progress = DownloadProgress(file_name=filename)

        ok = await self.handshake(filename)
        data_channel = (self.server[0], ok.port)
        progress.file_size = ok.size
        progress.phase = 'downloading'
        logger.info(f"Downloading {filename} ({ok.size:,} bytes) from port {ok.port}")
        if progress_callback:
            progress_callback(progress)

        target = DownloadTarget(local_path, atomic=self.atomic)
        try:
            async with target:
                received = 0
                while received < ok.size:
                    start, end = next_range(received, ok.size, self.block_size)
                    block = await self.fetch_chunk(data_channel, filename, start, end)
                    await target.append(block)
                    received += len(block)

                    progress.bytes_downloaded = received
                    progress.chunks += 1
                    if progress_callback:
                        progress_callback(progress)

                progress.phase = 'closing'
                await self.close_transfer(data_channel, filename)
        except Exception:
            progress.phase = 'failed'
            if progress_callback:
                progress_callback(progress)
            raise

        progress.phase = 'complete'
        if progress_callback:
            progress_callback(progress)

        self.files_downloaded += 1
        self.total_bytes += ok.size
        logger.info(f"Download complete: {filename}")
        return target.path

    async def download_all(self, filenames: List[str],
                           progress_callback: ProgressCallback = None) -> List[DownloadResult]:
        """
        Download files in order.

        A failure only ends the file it happened in; the batch goes on.
        """
        results = []
        for filename in filenames:
            try:
                path = await self.download(filename, progress_callback)
            except TransferRefused as e:
                logger.warning(f"Server refused {filename}: {e.reason.value}")
                results.append(DownloadResult(filename, 'refused', reason=e.reason.value))
            except (RequestTimeoutError, ValueError, OSError) as e:
                logger.error(f"Download of {filename} failed: {e}")
                results.append(DownloadResult(filename, 'failed', reason=str(e)))
            else:
                size = path.stat().st_size
                results.append(DownloadResult(
                    filename, 'complete', size=size, bytes_received=size, path=path
                ))
        return results

