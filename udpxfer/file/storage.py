"""
File Storage

Filesystem access for both ends of a transfer:
- FileStore: the directory a server serves files from
- DownloadTarget: the local file a client writes received chunks into

Design Decision: Async File I/O
===============================

The server runs every transfer session on one event loop. A blocking
read on a slow disk would stall every other session, so file access goes
through aiofiles (reads and writes run in the default thread pool).

Layout:
```
root/                 # served directory (server)
├── report.pdf
└── logs/app.log      # requested as "logs/app.log"

output/               # download directory (client)
├── report.pdf
└── report.pdf.part   # only while downloading in atomic mode
```
"""

import logging
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class FileStore:
    """
    Files a server is willing to send.

    Names are resolved relative to the root; anything that resolves
    outside it (``../secret``, absolute paths, symlinks pointing out) is
    treated as missing.
    """

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    async def resolve(self, filename: str) -> Optional[Path]:
        """
        Map a requested name to a regular file under the root.

        Returns:
            Absolute path, or None if there is no such file
        """
        if Path(filename).is_absolute():
            logger.warning(f"Rejected absolute path: {filename}")
            return None

        try:
            path = (self.root / filename).resolve()
        except (OSError, RuntimeError, ValueError):
            return None

        if path != self.root and self.root not in path.parents:
            logger.warning(f"Rejected path outside served root: {filename}")
            return None

        if not await aiofiles.os.path.isfile(path):
            return None
        return path

    async def size(self, path: Path) -> int:
        """Size of a file in bytes."""
        return await aiofiles.os.path.getsize(path)

    def open(self, path: Path):
        """Open a served file for reading (use with ``async with``)."""
        return aiofiles.open(path, 'rb')


async def read_block(f, offset: int, length: int) -> bytes:
    """Read up to `length` bytes at `offset`; short or empty past end-of-file."""
    await f.seek(offset)
    return await f.read(length)


class DownloadTarget:
    """
    Local file receiving a download.

    Chunks are appended in order. In atomic mode the data goes to
    ``<name>.part`` and is renamed into place only when the download
    completes; otherwise a failed download leaves the partial file as is.
    """

    PART_SUFFIX = '.part'

    def __init__(self, path: Path, atomic: bool = False):
        self.path = Path(path)
        self.atomic = atomic
        self.bytes_written = 0
        self._file = None

    @property
    def write_path(self) -> Path:
        """Where bytes are actually written."""
        if self.atomic:
            return self.path.with_name(self.path.name + self.PART_SUFFIX)
        return self.path

    async def open(self):
        """Create (or truncate) the output file."""
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        self._file = await aiofiles.open(self.write_path, 'wb')
        self.bytes_written = 0

    async def append(self, data: bytes):
        """Append a received block."""
        if self._file is None:
            raise RuntimeError("Download target not open")
        await self._file.write(data)
        self.bytes_written += len(data)

    async def close(self, complete: bool = True):
        """
        Close the output file.

        Args:
            complete: Whether the whole file was received. In atomic mode
                      this decides between rename-into-place and discard.
        """
        if self._file is None:
            return

        await self._file.close()
        self._file = None

        if not self.atomic:
            return

        if complete:
            await aiofiles.os.replace(self.write_path, self.path)
        else:
            await aiofiles.os.remove(self.write_path)
            logger.debug(f"Discarded partial download {self.write_path}")

    async def __aenter__(self) -> 'DownloadTarget':
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close(complete=exc_type is None)
