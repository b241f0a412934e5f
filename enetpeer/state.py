"""Peer states, packets, channels and the command records peers keep in their queues."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from enetpeer.protocol import Command

PROTOCOL_MAXIMUM_PEER_ID = 0xFFF
PROTOCOL_MAXIMUM_FRAGMENT_COUNT = 1024 * 1024
PROTOCOL_MAXIMUM_WINDOW_SIZE = 65536

PEER_DEFAULT_ROUND_TRIP_TIME = 500
PEER_DEFAULT_PACKET_THROTTLE = 32
PEER_PACKET_THROTTLE_SCALE = 32
PEER_PACKET_THROTTLE_ACCELERATION = 2
PEER_PACKET_THROTTLE_DECELERATION = 2
PEER_PACKET_THROTTLE_INTERVAL = 5000
PEER_TIMEOUT_LIMIT = 32
PEER_TIMEOUT_MINIMUM = 5000
PEER_TIMEOUT_MAXIMUM = 30000
PEER_PING_INTERVAL = 500
PEER_RELIABLE_WINDOWS = 16
PEER_RELIABLE_WINDOW_SIZE = 0x1000
PEER_FREE_RELIABLE_WINDOWS = 8
PEER_UNSEQUENCED_WINDOW_WORDS = 32


class PeerState(enum.IntEnum):
    """The connection states a peer moves through."""

    DISCONNECTED = 0
    CONNECTING = 1
    ACKNOWLEDGING_CONNECT = 2
    CONNECTION_PENDING = 3
    CONNECTION_SUCCEEDED = 4
    CONNECTED = 5
    DISCONNECT_LATER = 6
    DISCONNECTING = 7
    ACKNOWLEDGING_DISCONNECT = 8
    ZOMBIE = 9


class PacketFlag(enum.IntFlag):
    """Delivery options of a packet."""

    NONE = 0
    RELIABLE = 1 << 0
    UNSEQUENCED = 1 << 1
    NO_ALLOCATE = 1 << 2
    UNRELIABLE_FRAGMENT = 1 << 3
    SENT = 1 << 8


class PeerSendError(Exception):
    """Raised when a packet cannot be queued for sending to a peer."""

    class Reason(enum.Enum):
        NOT_CONNECTED = "peer is not connected"
        INVALID_CHANNEL = "channel id is out of range"
        PACKET_TOO_LARGE = "packet exceeds the host's maximum packet size"
        FRAGMENTS_EXCEEDED = "packet needs more fragments than the protocol allows"
        FAILED_TO_QUEUE = "command could not be queued"

    def __init__(self, reason: PeerSendError.Reason) -> None:
        super().__init__(reason.value)
        self.reason = reason


@dataclass(eq=False)
class Packet:
    """A block of data with delivery flags, shared by the commands that carry it."""

    data: bytes = b""
    flags: PacketFlag = PacketFlag.NONE
    reference_count: int = 0

    def __post_init__(self) -> None:
        self.data = bytes(self.data)
        self.flags = PacketFlag(self.flags)

    @property
    def data_length(self) -> int:
        return len(self.data)

    def release(self) -> bool:
        """Drop one reference; return True when no references remain."""
        if self.reference_count > 0:
            self.reference_count -= 1
        return self.reference_count == 0


@dataclass(eq=False)
class Acknowledgement:
    """A received command waiting to be acknowledged."""

    command: Command
    sent_time: int = 0


@dataclass(eq=False)
class OutgoingCommand:
    """A command queued for sending, with the part of a packet it carries."""

    command: Command = field(default_factory=Command)
    packet: Packet | None = None
    fragment_offset: int = 0
    fragment_length: int = 0
    reliable_sequence_number: int = 0
    unreliable_sequence_number: int = 0
    sent_time: int = 0
    round_trip_timeout: int = 0
    queue_time: int = 0
    send_attempts: int = 0


@dataclass(eq=False)
class IncomingCommand:
    """A received command waiting to be dispatched, possibly still being reassembled."""

    command: Command = field(default_factory=Command)
    packet: Packet | None = None
    reliable_sequence_number: int = 0
    unreliable_sequence_number: int = 0
    fragment_count: int = 0
    fragments_remaining: int = 0
    fragments: int = 0

    def _check_fragment(self, fragment_number: int) -> None:
        if not 0 <= fragment_number < self.fragment_count:
            raise IndexError(
                f"fragment {fragment_number} out of range for {self.fragment_count} fragments"
            )

    def has_fragment(self, fragment_number: int) -> bool:
        """Whether the given fragment has arrived."""
        self._check_fragment(fragment_number)
        return bool(self.fragments >> fragment_number & 1)

    def mark_fragment(self, fragment_number: int) -> bool:
        """Record a fragment's arrival; return False if it had already arrived."""
        if self.has_fragment(fragment_number):
            return False
        self.fragments |= 1 << fragment_number
        self.fragments_remaining -= 1
        return True


@dataclass(eq=False)
class Channel:
    """Sequencing state and incoming queues of one channel of a peer."""

    outgoing_reliable_sequence_number: int = 0
    outgoing_unreliable_sequence_number: int = 0
    used_reliable_windows: int = 0
    reliable_windows: list[int] = field(
        default_factory=lambda: [0] * PEER_RELIABLE_WINDOWS
    )
    incoming_reliable_sequence_number: int = 0
    incoming_unreliable_sequence_number: int = 0
    incoming_reliable_commands: list[IncomingCommand] = field(default_factory=list)
    incoming_unreliable_commands: list[IncomingCommand] = field(default_factory=list)