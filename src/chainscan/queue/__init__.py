"""
Queue-based scan pipeline: endpoint pool, event queue, retry scheduler,
monitor worker and the service that wires them together.
"""

from .event_queue import EventQueue, QueueClosed, QueueStats
from .rpc_pool import EndpointPool, RPCEndpoint
from .retry import RetryScheduler
from .worker import MonitorWorker
from .manager import ScanService

__all__ = [
    "EventQueue",
    "QueueClosed",
    "QueueStats",
    "EndpointPool",
    "RPCEndpoint",
    "RetryScheduler",
    "MonitorWorker",
    "ScanService",
]
