"""
chatsync - realtime conversation synchronization client
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("chatsync")
except PackageNotFoundError:
    __version__ = "0.1.0"

__logo__ = "💬"
