"""Queue Sender - acknowledgment paced G-code streaming for GRBL controllers."""

__version__ = "0.1.0"
__author__ = "Bob Kolbasowski"

from .connection_registry import (
    EPHEMERAL,
    PERSISTENT,
    CommandResponse,
    ConnectionRegistry,
    ConnectionStatus,
    TransportLease,
)
from .events import Event, EventBroadcaster, QueueObserver, StatusBoard
from .gcode_source import CommandSequence, JobMetadata
from .job_queue import Job, JobQueue, JobStatus, QueueSnapshot
from .job_store import JobStore
from .protocol import StreamSession, StreamState
from .streamer import GcodeStreamer, StreamResult
from .transport import TransportConfig, TransportHandle, TransportState, list_serial_ports
from .utils.config import Settings, StreamTimings

__all__ = [
    "__version__",
    # Connections
    "ConnectionRegistry",
    "ConnectionStatus",
    "CommandResponse",
    "TransportLease",
    "PERSISTENT",
    "EPHEMERAL",
    "TransportConfig",
    "TransportHandle",
    "TransportState",
    "list_serial_ports",
    # Streaming
    "StreamSession",
    "StreamState",
    "GcodeStreamer",
    "StreamResult",
    # Queue
    "CommandSequence",
    "JobMetadata",
    "Job",
    "JobQueue",
    "JobStatus",
    "QueueSnapshot",
    "JobStore",
    # Events
    "Event",
    "EventBroadcaster",
    "QueueObserver",
    "StatusBoard",
    # Settings
    "Settings",
    "StreamTimings",
]
