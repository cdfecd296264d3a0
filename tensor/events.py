"""Connection events delivered from the socket reader to the processing loop."""

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class Opened:
    """The websocket handshake completed."""


@dataclass(frozen=True)
class Frame:
    """One inbound frame, text or binary."""
    text: Union[str, bytes]


@dataclass(frozen=True)
class Closed:
    """The socket closed, or a connection attempt failed."""
    code: Optional[int] = None
    reason: str = ''


@dataclass(frozen=True)
class TransportError:
    """The transport reported an error. The following Closed event is authoritative."""
    error: BaseException


ConnectionEvent = Union[Opened, Frame, Closed, TransportError]
