"""Protocol command identifiers, flags and the command record carried by peers."""

from __future__ import annotations

import enum
from dataclasses import dataclass

COMMAND_MASK = 0x0F
"""Bits of the command byte that hold the command type."""

HEADER_SIZE = 4
"""Size of the packet header: peer id and sent time, two 16-bit words."""

COMMAND_HEADER_SIZE = 4
"""Size of a command header: command, channel id and reliable sequence number."""

ALL_CHANNELS = 0xFF
"""Channel id used by commands that belong to the peer rather than a channel."""


class CommandType(enum.IntEnum):
    """The command types of the wire protocol."""

    NONE = 0
    ACKNOWLEDGE = 1
    CONNECT = 2
    VERIFY_CONNECT = 3
    DISCONNECT = 4
    PING = 5
    SEND_RELIABLE = 6
    SEND_UNRELIABLE = 7
    SEND_FRAGMENT = 8
    SEND_UNSEQUENCED = 9
    BANDWIDTH_LIMIT = 10
    THROTTLE_CONFIGURE = 11
    SEND_UNRELIABLE_FRAGMENT = 12


class CommandFlag(enum.IntFlag):
    """Flags or-ed into the high bits of the command byte."""

    NONE = 0
    UNSEQUENCED = 1 << 6
    ACKNOWLEDGE = 1 << 7


_COMMAND_SIZES: dict[CommandType, int] = {
    CommandType.NONE: 0,
    CommandType.ACKNOWLEDGE: COMMAND_HEADER_SIZE + 4,
    CommandType.CONNECT: COMMAND_HEADER_SIZE + 44,
    CommandType.VERIFY_CONNECT: COMMAND_HEADER_SIZE + 40,
    CommandType.DISCONNECT: COMMAND_HEADER_SIZE + 4,
    CommandType.PING: COMMAND_HEADER_SIZE,
    CommandType.SEND_RELIABLE: COMMAND_HEADER_SIZE + 2,
    CommandType.SEND_UNRELIABLE: COMMAND_HEADER_SIZE + 4,
    CommandType.SEND_FRAGMENT: COMMAND_HEADER_SIZE + 20,
    CommandType.SEND_UNSEQUENCED: COMMAND_HEADER_SIZE + 4,
    CommandType.BANDWIDTH_LIMIT: COMMAND_HEADER_SIZE + 8,
    CommandType.THROTTLE_CONFIGURE: COMMAND_HEADER_SIZE + 12,
    CommandType.SEND_UNRELIABLE_FRAGMENT: COMMAND_HEADER_SIZE + 20,
}

SEND_FRAGMENT_SIZE = _COMMAND_SIZES[CommandType.SEND_FRAGMENT]
ACKNOWLEDGE_SIZE = _COMMAND_SIZES[CommandType.ACKNOWLEDGE]


def _command_type(command_byte: int) -> CommandType:
    try:
        return CommandType(command_byte & COMMAND_MASK)
    except ValueError:
        raise ValueError(
            f"unknown command type {command_byte & COMMAND_MASK}"
        ) from None


@dataclass
class Command:
    """A protocol command: its header and the payload fields peers fill in.

    Values are held in host order; the wire encoding is left to the sender.
    """

    command: int = 0
    channel_id: int = 0
    reliable_sequence_number: int = 0
    data_length: int = 0
    unreliable_sequence_number: int = 0
    unsequenced_group: int = 0
    start_sequence_number: int = 0
    fragment_count: int = 0
    fragment_number: int = 0
    total_length: int = 0
    fragment_offset: int = 0
    packet_throttle_interval: int = 0
    packet_throttle_acceleration: int = 0
    packet_throttle_deceleration: int = 0
    data: int = 0

    @property
    def type(self) -> CommandType:
        """The command type, with the flag bits masked off."""
        return _command_type(self.command)

    @property
    def acknowledge(self) -> bool:
        """Whether the command asks to be acknowledged."""
        return bool(self.command & CommandFlag.ACKNOWLEDGE)

    @property
    def unsequenced(self) -> bool:
        """Whether the command is sent outside the reliable sequence."""
        return bool(self.command & CommandFlag.UNSEQUENCED)


def command_size(command: int | Command) -> int:
    """Return the wire size of a command, given a command byte or a Command."""
    command_byte = command.command if isinstance(command, Command) else int(command)
    return _COMMAND_SIZES[_command_type(command_byte)]