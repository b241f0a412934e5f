"""Queueing of received commands on a peer's channels and their dispatch in order."""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable

from enetpeer.peer import Peer
from enetpeer.protocol import Command, CommandType
from enetpeer.state import (
    PEER_FREE_RELIABLE_WINDOWS,
    PEER_RELIABLE_WINDOW_SIZE,
    PEER_RELIABLE_WINDOWS,
    PROTOCOL_MAXIMUM_FRAGMENT_COUNT,
    Channel,
    IncomingCommand,
    Packet,
    PacketFlag,
    PeerState,
)

_U16_MASK = 0xFFFF

_RELIABLE_TYPES = (CommandType.SEND_RELIABLE, CommandType.SEND_FRAGMENT)
_UNRELIABLE_TYPES = (CommandType.SEND_UNRELIABLE, CommandType.SEND_UNRELIABLE_FRAGMENT)


class _Discard(Exception):
    """The command is a duplicate or falls outside the receive window."""


def _schedule(peer: Peer) -> None:
    if not peer.needs_dispatch:
        peer.host.schedule_dispatch(peer)
        peer.needs_dispatch = True


def _window_of(sequence_number: int, channel: Channel) -> tuple[int, int]:
    reliable_window = sequence_number // PEER_RELIABLE_WINDOW_SIZE
    current_window = channel.incoming_reliable_sequence_number // PEER_RELIABLE_WINDOW_SIZE
    if sequence_number < channel.incoming_reliable_sequence_number:
        reliable_window += PEER_RELIABLE_WINDOWS
    return reliable_window, current_window


def _command_type(command: Command) -> CommandType | None:
    try:
        return command.type
    except ValueError:
        return None


def remove_incoming_commands(
    queue: list[IncomingCommand],
    start: int,
    end: int,
    exclude: IncomingCommand | None = None,
) -> int:
    """Drop the commands in ``queue[start:end]`` except ``exclude``; return how many went."""
    kept: list[IncomingCommand] = []
    removed = 0
    for incoming in queue[start:end]:
        if incoming is exclude:
            kept.append(incoming)
            continue
        if incoming.packet is not None:
            incoming.packet.release()
        removed += 1
    queue[start:end] = kept
    return removed


def _move_to_dispatched(
    peer: Peer, queue: list[IncomingCommand], start: int, end: int
) -> None:
    peer.dispatched_commands.extend(queue[start:end])
    del queue[start:end]
    _schedule(peer)


def dispatch_incoming_unreliable_commands(
    peer: Peer, channel: Channel, queued_command: IncomingCommand | None
) -> None:
    """Move the unreliable commands that are ready to the peer's dispatch queue.

    Commands that can no longer be delivered are dropped, except ``queued_command``.
    """
    queue = channel.incoming_unreliable_commands
    start = dropped = current = 0
    while current < len(queue):
        incoming = queue[current]
        if _command_type(incoming.command) is CommandType.SEND_UNSEQUENCED:
            current += 1
            continue
        if incoming.reliable_sequence_number == channel.incoming_reliable_sequence_number:
            if incoming.fragments_remaining <= 0:
                channel.incoming_unreliable_sequence_number = (
                    incoming.unreliable_sequence_number
                )
                current += 1
                continue
            if start != current:
                _move_to_dispatched(peer, queue, start, current)
                current = start
                dropped = current
            elif dropped != current:
                dropped = current - 1
        else:
            reliable_window, current_window = _window_of(
                incoming.reliable_sequence_number, channel
            )
            if (
                current_window
                <= reliable_window
                < current_window + PEER_FREE_RELIABLE_WINDOWS - 1
            ):
                break
            if start != current:
                _move_to_dispatched(peer, queue, start, current)
                current = start
            dropped = current + 1
        start = current + 1
        current += 1

    if start != current:
        _move_to_dispatched(peer, queue, start, current)
        current = start
        dropped = current

    remove_incoming_commands(queue, 0, dropped, queued_command)


def dispatch_incoming_reliable_commands(
    peer: Peer, channel: Channel, queued_command: IncomingCommand | None
) -> None:
    """Move the reliable commands that are next in sequence to the peer's dispatch queue."""
    queue = channel.incoming_reliable_commands
    ready = 0
    for incoming in queue:
        expected = (channel.incoming_reliable_sequence_number + 1) & _U16_MASK
        if incoming.fragments_remaining > 0 or incoming.reliable_sequence_number != expected:
            break
        channel.incoming_reliable_sequence_number = incoming.reliable_sequence_number
        if incoming.fragment_count > 0:
            channel.incoming_reliable_sequence_number = (
                channel.incoming_reliable_sequence_number + incoming.fragment_count - 1
            ) & _U16_MASK
        ready += 1
    if ready == 0:
        return
    channel.incoming_unreliable_sequence_number = 0
    _move_to_dispatched(peer, queue, 0, ready)
    if channel.incoming_unreliable_commands:
        dispatch_incoming_unreliable_commands(peer, channel, queued_command)


def _reliable_position(
    channel: Channel, reliable_sequence_number: int
) -> int:
    if reliable_sequence_number == channel.incoming_reliable_sequence_number:
        raise _Discard
    incoming_sequence = channel.incoming_reliable_sequence_number
    queue = channel.incoming_reliable_commands
    for index in reversed(range(len(queue))):
        existing = queue[index].reliable_sequence_number
        if reliable_sequence_number >= incoming_sequence:
            if existing < incoming_sequence:
                continue
        elif existing >= incoming_sequence:
            return index + 1
        if existing <= reliable_sequence_number:
            if existing < reliable_sequence_number:
                return index + 1
            raise _Discard
    return 0


def _unreliable_position(
    channel: Channel, reliable_sequence_number: int, unreliable_sequence_number: int
) -> int:
    incoming_sequence = channel.incoming_reliable_sequence_number
    if (
        reliable_sequence_number == incoming_sequence
        and unreliable_sequence_number <= channel.incoming_unreliable_sequence_number
    ):
        raise _Discard
    queue = channel.incoming_unreliable_commands
    for index in reversed(range(len(queue))):
        existing = queue[index]
        if reliable_sequence_number >= incoming_sequence:
            if existing.reliable_sequence_number < incoming_sequence:
                continue
        elif existing.reliable_sequence_number >= incoming_sequence:
            return index + 1
        if existing.reliable_sequence_number < reliable_sequence_number:
            return index + 1
        if (
            existing.reliable_sequence_number <= reliable_sequence_number
            and existing.unreliable_sequence_number <= unreliable_sequence_number
        ):
            if existing.unreliable_sequence_number < unreliable_sequence_number:
                return index + 1
            raise _Discard
    return 0


def queue_incoming_command(
    peer: Peer,
    command: Command,
    data: bytes | Iterable[int],
    flags: PacketFlag | int = PacketFlag.NONE,
    fragment_count: int = 0,
) -> IncomingCommand | None:
    """Queue a received command on its channel and dispatch whatever became ready.

    Returns the queued command, or None when the command was a duplicate or out
    of window and was dropped. Raises ValueError when the command cannot be
    queued: a dropped fragment start, too much data waiting, or too many fragments.
    """
    kind = _command_type(command)
    unreliable_sequence_number = 0
    reliable_sequence_number = 0
    try:
        if peer.state == PeerState.DISCONNECT_LATER:
            raise _Discard
        channel = peer.channels[command.channel_id]
        if kind is not CommandType.SEND_UNSEQUENCED:
            reliable_sequence_number = command.reliable_sequence_number
            reliable_window, current_window = _window_of(reliable_sequence_number, channel)
            if (
                reliable_window < current_window
                or reliable_window >= current_window + PEER_FREE_RELIABLE_WINDOWS - 1
            ):
                raise _Discard
        if kind in _RELIABLE_TYPES:
            queue = channel.incoming_reliable_commands
            position = _reliable_position(channel, reliable_sequence_number)
        elif kind in _UNRELIABLE_TYPES:
            if kind is CommandType.SEND_UNRELIABLE_FRAGMENT:
                unreliable_sequence_number = command.start_sequence_number
            else:
                unreliable_sequence_number = command.unreliable_sequence_number
            queue = channel.incoming_unreliable_commands
            position = _unreliable_position(
                channel, reliable_sequence_number, unreliable_sequence_number
            )
        elif kind is CommandType.SEND_UNSEQUENCED:
            queue = channel.incoming_unreliable_commands
            position = 0
        else:
            raise _Discard
    except _Discard:
        if fragment_count <= 0:
            return None
        raise ValueError("fragmented command was discarded") from None

    if peer.total_waiting_data >= peer.host.maximum_waiting_data:
        raise ValueError("peer has too much data waiting to be received")
    if fragment_count > PROTOCOL_MAXIMUM_FRAGMENT_COUNT:
        raise ValueError(f"too many fragments: {fragment_count}")

    packet = Packet(data=bytes(data), flags=PacketFlag(flags))
    incoming = IncomingCommand(
        command=dataclasses.replace(command),
        packet=packet,
        reliable_sequence_number=command.reliable_sequence_number,
        unreliable_sequence_number=unreliable_sequence_number & _U16_MASK,
        fragment_count=fragment_count,
        fragments_remaining=fragment_count,
    )
    packet.reference_count += 1
    peer.total_waiting_data += packet.data_length
    queue.insert(position, incoming)

    if kind in _RELIABLE_TYPES:
        dispatch_incoming_reliable_commands(peer, channel, incoming)
    else:
        dispatch_incoming_unreliable_commands(peer, channel, incoming)
    return incoming