"""
streamdrop - point-to-point file transfer over raw TCP.

A sender streams files to a listening receiver, one connection per file,
with a SHA-256 trailer for end-to-end integrity checking.
"""

from .transfer import send_all, serve, FileSender, TransferServer

__version__ = '0.1.0'

__all__ = [
    'send_all',
    'serve',
    'FileSender',
    'TransferServer',
    '__version__',
]
