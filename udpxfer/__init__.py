"""
udpxfer - Reliable File Transfer over UDP

A server advertises files by name on a control port. A client asks for a
file, gets redirected to a dedicated data port, pulls the content in
bounded chunks and closes the transfer.
"""

from .config import Config, load_config
from .server import FileServer
from .client import FileClient

__version__ = '0.1.0'

__all__ = [
    'Config',
    'load_config',
    'FileServer',
    'FileClient',
]
