"""Remote Command Channel: one shared shell session with interactive and programmatic access."""

from .channel import (
    ChannelEvent,
    ChannelEventType,
    CommandResult,
    RemoteCommandChannel,
)
from .markers import MarkerStreamParser, strip_ansi, wrap_command
from .os_detector import OSDetector, OSInfo
from .session import ByteStreamSession, SessionConfig, SubprocessSession

__all__ = [
    "ByteStreamSession",
    "ChannelEvent",
    "ChannelEventType",
    "CommandResult",
    "MarkerStreamParser",
    "OSDetector",
    "OSInfo",
    "RemoteCommandChannel",
    "SessionConfig",
    "SubprocessSession",
    "strip_ansi",
    "wrap_command",
]
