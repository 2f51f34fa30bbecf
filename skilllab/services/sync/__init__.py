"""
Local-first synchronization

Components:
- Outbound mutation queue persisted in the local cache
- Remote store transports (in-process and HTTP)
- Sync coordinator: FIFO push per record, conflict surfacing, scoped pull
"""

from .outbound_queue import OutboundQueue
from .transport import RemoteStore, BoundRemoteStore, HttpRemoteStore
from .sync_coordinator import SyncCoordinator

__all__ = [
    'OutboundQueue',
    'RemoteStore',
    'BoundRemoteStore',
    'HttpRemoteStore',
    'SyncCoordinator',
]
