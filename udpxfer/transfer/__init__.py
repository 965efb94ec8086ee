"""
Transfer Module - Reliable File Transfer over UDP

Handles the control-channel handshake, per-transfer data channels and
the retry discipline that makes request/response work over UDP.
"""

from .protocol import (
    MalformedMessage, MessageType, ErrorReason,
    DownloadRequest, ControlOk, ControlErr,
    ChunkGet, ChunkClose, ChunkData, ChunkCloseOk,
)
from .transport import DatagramEndpoint, open_endpoint, resolve_address
from .retry import RetryingRequester, RequestTimeoutError, backoff_schedule
from .ports import PortAllocator
from .session import TransferSession
from .dispatcher import Dispatcher
from .downloader import (
    FileDownloader, DownloadProgress, DownloadResult, TransferRefused,
)

__all__ = [
    'MalformedMessage',
    'MessageType',
    'ErrorReason',
    'DownloadRequest',
    'ControlOk',
    'ControlErr',
    'ChunkGet',
    'ChunkClose',
    'ChunkData',
    'ChunkCloseOk',
    'DatagramEndpoint',
    'open_endpoint',
    'resolve_address',
    'RetryingRequester',
    'RequestTimeoutError',
    'backoff_schedule',
    'PortAllocator',
    'TransferSession',
    'Dispatcher',
    'FileDownloader',
    'DownloadProgress',
    'DownloadResult',
    'TransferRefused',
]
