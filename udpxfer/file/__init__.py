"""
File Module - Served Files and Download Targets

This module handles filesystem access for the transfer protocol.
"""

from .storage import FileStore, DownloadTarget, read_block
from .filelist import read_file_list

__all__ = [
    'FileStore',
    'DownloadTarget',
    'read_block',
    'read_file_list',
]
