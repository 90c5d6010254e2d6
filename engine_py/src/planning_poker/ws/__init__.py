"""
WebSocket protocol and realtime gateway for planning poker sessions.
"""

from .events import *
from .server import ConnectionManager, RealtimeGateway

__all__ = ["ConnectionManager", "RealtimeGateway"]
