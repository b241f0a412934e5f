"""A remote peer: its connection state, sequencing, throttling and command queues."""

from __future__ import annotations

import dataclasses
from typing import Any

from enetpeer.host import Host
from enetpeer.protocol import (
    ACKNOWLEDGE_SIZE,
    ALL_CHANNELS,
    HEADER_SIZE,
    SEND_FRAGMENT_SIZE,
    Command,
    CommandFlag,
    CommandType,
    command_size,
)
from enetpeer.state import (
    PEER_DEFAULT_PACKET_THROTTLE,
    PEER_DEFAULT_ROUND_TRIP_TIME,
    PEER_FREE_RELIABLE_WINDOWS,
    PEER_PACKET_THROTTLE_ACCELERATION,
    PEER_PACKET_THROTTLE_DECELERATION,
    PEER_PACKET_THROTTLE_INTERVAL,
    PEER_PACKET_THROTTLE_SCALE,
    PEER_PING_INTERVAL,
    PEER_RELIABLE_WINDOW_SIZE,
    PEER_RELIABLE_WINDOWS,
    PEER_TIMEOUT_LIMIT,
    PEER_TIMEOUT_MAXIMUM,
    PEER_TIMEOUT_MINIMUM,
    PEER_UNSEQUENCED_WINDOW_WORDS,
    PROTOCOL_MAXIMUM_FRAGMENT_COUNT,
    PROTOCOL_MAXIMUM_PEER_ID,
    PROTOCOL_MAXIMUM_WINDOW_SIZE,
    Acknowledgement,
    Channel,
    IncomingCommand,
    OutgoingCommand,
    Packet,
    PacketFlag,
    PeerSendError,
    PeerState,
)

NEW_HEADER_SIZE = 10
"""Size of the extended packet header: integrity words, peer id and sent time."""

CHECKSUM_SIZE = 4

_U16_MASK = 0xFFFF
_U32_MASK = 0xFFFFFFFF


def _release_outgoing(queue: list[OutgoingCommand]) -> None:
    for outgoing in queue:
        if outgoing.packet is not None:
            outgoing.packet.release()
    queue.clear()


def _release_incoming(queue: list[IncomingCommand]) -> None:
    for incoming in queue:
        if incoming.packet is not None:
            incoming.packet.release()
    queue.clear()


class Peer:
    """One remote end of a host, with the queues of commands to and from it."""

    def __init__(self, host: Host, incoming_peer_id: int = 0) -> None:
        self.host = host
        self.incoming_peer_id = incoming_peer_id
        self.outgoing_session_id = 0xFF
        self.incoming_session_id = 0xFF
        self.address: Any = None
        self.data: Any = None
        self.state = PeerState.DISCONNECTED
        self.channels: list[Channel] = []
        self.acknowledgements: list[Acknowledgement] = []
        self.sent_reliable_commands: list[OutgoingCommand] = []
        self.outgoing_send_reliable_commands: list[OutgoingCommand] = []
        self.outgoing_commands: list[OutgoingCommand] = []
        self.dispatched_commands: list[IncomingCommand] = []
        self.needs_dispatch = False
        self.continue_sending = False
        self.reset()

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    def setup_channels(self, channel_count: int) -> None:
        """Give the peer a fresh set of channels."""
        if channel_count < 0:
            raise ValueError(f"channel count must not be negative, got {channel_count}")
        self.channels = [Channel() for _ in range(channel_count)]

    def throttle_configure(self, interval: int, acceleration: int, deceleration: int) -> None:
        """Set the throttle parameters and tell the remote end about them."""
        self.packet_throttle_interval = interval
        self.packet_throttle_acceleration = acceleration
        self.packet_throttle_deceleration = deceleration
        command = Command(
            command=CommandType.THROTTLE_CONFIGURE | CommandFlag.ACKNOWLEDGE,
            channel_id=ALL_CHANNELS,
            packet_throttle_interval=interval,
            packet_throttle_acceleration=acceleration,
            packet_throttle_deceleration=deceleration,
        )
        self.queue_outgoing_command(command)

    def throttle(self, rtt: int) -> int:
        """Adjust the packet throttle for a measured round trip time.

        Returns 1 when the throttle was raised, -1 when lowered and 0 otherwise.
        """
        if self.last_round_trip_time <= self.last_round_trip_time_variance:
            self.packet_throttle = self.packet_throttle_limit
        elif rtt <= self.last_round_trip_time:
            self.packet_throttle = (
                self.packet_throttle + self.packet_throttle_acceleration
            ) & _U32_MASK
            if self.packet_throttle > self.packet_throttle_limit:
                self.packet_throttle = self.packet_throttle_limit
            return 1
        elif rtt > (self.last_round_trip_time + 2 * self.last_round_trip_time_variance) & _U32_MASK:
            if self.packet_throttle > self.packet_throttle_deceleration:
                self.packet_throttle -= self.packet_throttle_deceleration
            else:
                self.packet_throttle = 0
            return -1
        return 0

    def _fragment_length(self) -> int:
        header = NEW_HEADER_SIZE if self.host.using_new_packet else HEADER_SIZE
        length = self.mtu - header - SEND_FRAGMENT_SIZE
        if self.host.checksum:
            length -= CHECKSUM_SIZE
        return length

    def send(self, channel_id: int, packet: Packet) -> None:
        """Queue a packet on a channel, splitting it into fragments if needed."""
        if self.state != PeerState.CONNECTED:
            raise PeerSendError(PeerSendError.Reason.NOT_CONNECTED)
        if not 0 <= channel_id < len(self.channels):
            raise PeerSendError(PeerSendError.Reason.INVALID_CHANNEL)
        if packet.data_length > self.host.maximum_packet_size:
            raise PeerSendError(PeerSendError.Reason.PACKET_TOO_LARGE)
        channel = self.channels[channel_id]
        fragment_length = self._fragment_length()
        if fragment_length <= 0:
            raise PeerSendError(PeerSendError.Reason.FAILED_TO_QUEUE)

        if packet.data_length > fragment_length:
            self._send_fragments(channel_id, channel, packet, fragment_length)
            return

        command = Command(channel_id=channel_id, data_length=packet.data_length)
        delivery = packet.flags & (PacketFlag.RELIABLE | PacketFlag.UNSEQUENCED)
        if delivery == PacketFlag.UNSEQUENCED:
            command.command = CommandType.SEND_UNSEQUENCED | CommandFlag.UNSEQUENCED
        elif (
            packet.flags & PacketFlag.RELIABLE
            or channel.outgoing_unreliable_sequence_number >= 0xFFFF
        ):
            command.command = CommandType.SEND_RELIABLE | CommandFlag.ACKNOWLEDGE
        else:
            command.command = int(CommandType.SEND_UNRELIABLE)
        self.queue_outgoing_command(command, packet, 0, packet.data_length)

    def _send_fragments(
        self, channel_id: int, channel: Channel, packet: Packet, fragment_length: int
    ) -> None:
        total = packet.data_length
        fragment_count = (total + fragment_length - 1) // fragment_length
        if fragment_count > PROTOCOL_MAXIMUM_FRAGMENT_COUNT:
            raise PeerSendError(PeerSendError.Reason.FRAGMENTS_EXCEEDED)
        delivery = packet.flags & (PacketFlag.RELIABLE | PacketFlag.UNRELIABLE_FRAGMENT)
        if (
            delivery == PacketFlag.UNRELIABLE_FRAGMENT
            and channel.outgoing_unreliable_sequence_number < 0xFFFF
        ):
            command_byte = int(CommandType.SEND_UNRELIABLE_FRAGMENT)
            start = (channel.outgoing_unreliable_sequence_number + 1) & _U16_MASK
        else:
            command_byte = CommandType.SEND_FRAGMENT | CommandFlag.ACKNOWLEDGE
            start = (channel.outgoing_reliable_sequence_number + 1) & _U16_MASK

        fragments = []
        for number, offset in enumerate(range(0, total, fragment_length)):
            length = min(fragment_length, total - offset)
            fragments.append(
                OutgoingCommand(
                    command=Command(
                        command=command_byte,
                        channel_id=channel_id,
                        start_sequence_number=start,
                        data_length=length,
                        fragment_count=fragment_count,
                        fragment_number=number,
                        total_length=total,
                        fragment_offset=offset,
                    ),
                    packet=packet,
                    fragment_offset=offset,
                    fragment_length=length,
                )
            )
        packet.reference_count += len(fragments)
        for fragment in fragments:
            self.setup_outgoing_command(fragment)

    def receive(self) -> tuple[int, Packet] | None:
        """Take the next dispatched packet as (channel id, packet), or None."""
        if not self.dispatched_commands:
            return None
        incoming = self.dispatched_commands.pop(0)
        packet = incoming.packet
        if packet is None:
            raise ValueError("dispatched command carries no packet")
        packet.reference_count -= 1
        self.total_waiting_data -= packet.data_length
        return incoming.command.channel_id, packet

    def reset_queues(self) -> None:
        """Drop every queued command and the peer's channels."""
        if self.needs_dispatch:
            self.host.dispatch_queue[:] = [
                queued for queued in self.host.dispatch_queue if queued is not self
            ]
            self.needs_dispatch = False
        self.acknowledgements.clear()
        _release_outgoing(self.sent_reliable_commands)
        _release_outgoing(self.outgoing_commands)
        _release_outgoing(self.outgoing_send_reliable_commands)
        _release_incoming(self.dispatched_commands)
        for channel in self.channels:
            _release_incoming(channel.incoming_reliable_commands)
            _release_incoming(channel.incoming_unreliable_commands)
        self.channels = []

    def on_connect(self) -> None:
        """Count the peer as connected on its host, unless it already is."""
        if self.state not in (PeerState.CONNECTED, PeerState.DISCONNECT_LATER):
            if self.incoming_bandwidth != 0:
                self.host.bandwidth_limited_peers += 1
            self.host.connected_peers += 1

    def on_disconnect(self) -> None:
        """Stop counting the peer as connected on its host, if it was."""
        if self.state in (PeerState.CONNECTED, PeerState.DISCONNECT_LATER):
            if self.incoming_bandwidth != 0:
                self.host.bandwidth_limited_peers -= 1
            self.host.connected_peers -= 1

    def reset(self) -> None:
        """Return the peer to the disconnected state with default settings."""
        self.on_disconnect()
        self.outgoing_peer_id = PROTOCOL_MAXIMUM_PEER_ID
        self.connect_id = 0
        self.state = PeerState.DISCONNECTED
        self.incoming_bandwidth = 0
        self.outgoing_bandwidth = 0
        self.incoming_bandwidth_throttle_epoch = 0
        self.outgoing_bandwidth_throttle_epoch = 0
        self.incoming_data_total = 0
        self.outgoing_data_total = 0
        self.last_send_time = 0
        self.last_receive_time = 0
        self.next_timeout = 0
        self.earliest_timeout = 0
        self.packet_loss_epoch = 0
        self.packets_sent = 0
        self.packets_lost = 0
        self.packet_loss = 0
        self.packet_loss_variance = 0
        self.packet_throttle = PEER_DEFAULT_PACKET_THROTTLE
        self.packet_throttle_limit = PEER_PACKET_THROTTLE_SCALE
        self.packet_throttle_counter = 0
        self.packet_throttle_epoch = 0
        self.packet_throttle_acceleration = PEER_PACKET_THROTTLE_ACCELERATION
        self.packet_throttle_deceleration = PEER_PACKET_THROTTLE_DECELERATION
        self.packet_throttle_interval = PEER_PACKET_THROTTLE_INTERVAL
        self.ping_interval = PEER_PING_INTERVAL
        self.timeout_limit = PEER_TIMEOUT_LIMIT
        self.timeout_minimum = PEER_TIMEOUT_MINIMUM
        self.timeout_maximum = PEER_TIMEOUT_MAXIMUM
        self.last_round_trip_time = PEER_DEFAULT_ROUND_TRIP_TIME
        self.lowest_round_trip_time = PEER_DEFAULT_ROUND_TRIP_TIME
        self.last_round_trip_time_variance = 0
        self.highest_round_trip_time_variance = 0
        self.round_trip_time = PEER_DEFAULT_ROUND_TRIP_TIME
        self.round_trip_time_variance = 0
        self.mtu = self.host.mtu
        self.reliable_data_in_transit = 0
        self.outgoing_reliable_sequence_number = 0
        self.window_size = PROTOCOL_MAXIMUM_WINDOW_SIZE
        self.incoming_unsequenced_group = 0
        self.outgoing_unsequenced_group = 0
        self.event_data = 0
        self.total_waiting_data = 0
        self.continue_sending = False
        self.unsequenced_window = [0] * PEER_UNSEQUENCED_WINDOW_WORDS
        self.reset_queues()

    def ping(self) -> None:
        """Queue a ping, if the peer is connected."""
        if self.state != PeerState.CONNECTED:
            return
        command = Command(
            command=CommandType.PING | CommandFlag.ACKNOWLEDGE,
            channel_id=ALL_CHANNELS,
        )
        self.queue_outgoing_command(command)

    def set_ping_interval(self, ping_interval: int) -> None:
        """Set how often to ping; 0 restores the default."""
        self.ping_interval = ping_interval or PEER_PING_INTERVAL

    def timeout(self, timeout_limit: int, timeout_minimum: int, timeout_maximum: int) -> None:
        """Set the timeout parameters; a 0 restores the default of that parameter."""
        self.timeout_limit = timeout_limit or PEER_TIMEOUT_LIMIT
        self.timeout_minimum = timeout_minimum or PEER_TIMEOUT_MINIMUM
        self.timeout_maximum = timeout_maximum or PEER_TIMEOUT_MAXIMUM

    def disconnect_now(self, data: int) -> None:
        """Send an unacknowledged disconnect at once and reset the peer."""
        if self.state == PeerState.DISCONNECTED:
            return
        if self.state not in (PeerState.ZOMBIE, PeerState.DISCONNECTING):
            self.reset_queues()
            command = Command(
                command=CommandType.DISCONNECT | CommandFlag.UNSEQUENCED,
                channel_id=ALL_CHANNELS,
                data=data,
            )
            self.queue_outgoing_command(command)
            self.host.flush()
        self.reset()

    def disconnect(self, data: int) -> None:
        """Begin a disconnect: acknowledged if connected, immediate otherwise."""
        if self.state in (
            PeerState.DISCONNECTING,
            PeerState.DISCONNECTED,
            PeerState.ACKNOWLEDGING_DISCONNECT,
            PeerState.ZOMBIE,
        ):
            return
        self.reset_queues()
        connected = self.state in (PeerState.CONNECTED, PeerState.DISCONNECT_LATER)
        flag = CommandFlag.ACKNOWLEDGE if connected else CommandFlag.UNSEQUENCED
        command = Command(
            command=CommandType.DISCONNECT | flag,
            channel_id=ALL_CHANNELS,
            data=data,
        )
        self.queue_outgoing_command(command)
        if connected:
            self.on_disconnect()
            self.state = PeerState.DISCONNECTING
        else:
            self.host.flush()
            self.reset()

    def has_outgoing_commands(self) -> bool:
        """Whether any command is still waiting to be sent or acknowledged."""
        return bool(
            self.outgoing_commands
            or self.outgoing_send_reliable_commands
            or self.sent_reliable_commands
        )

    def disconnect_later(self, data: int) -> None:
        """Disconnect once all queued commands have gone out."""
        if (
            self.state in (PeerState.CONNECTED, PeerState.DISCONNECT_LATER)
            and self.has_outgoing_commands()
        ):
            self.state = PeerState.DISCONNECT_LATER
            self.event_data = data
        else:
            self.disconnect(data)

    def queue_acknowledgement(self, command: Command, sent_time: int) -> Acknowledgement | None:
        """Queue an acknowledgement of a received command.

        Returns None when the command falls in a window that must not be acknowledged yet.
        """
        if command.channel_id < len(self.channels):
            channel = self.channels[command.channel_id]
            reliable_window = command.reliable_sequence_number // PEER_RELIABLE_WINDOW_SIZE
            current_window = (
                channel.incoming_reliable_sequence_number // PEER_RELIABLE_WINDOW_SIZE
            )
            if command.reliable_sequence_number < channel.incoming_reliable_sequence_number:
                reliable_window += PEER_RELIABLE_WINDOWS
            if (
                current_window + PEER_FREE_RELIABLE_WINDOWS - 1
                <= reliable_window
                <= current_window + PEER_FREE_RELIABLE_WINDOWS
            ):
                return None
        self.outgoing_data_total = (self.outgoing_data_total + ACKNOWLEDGE_SIZE) & _U32_MASK
        acknowledgement = Acknowledgement(
            command=dataclasses.replace(command), sent_time=sent_time & _U16_MASK
        )
        self.acknowledgements.append(acknowledgement)
        return acknowledgement

    def setup_outgoing_command(self, outgoing_command: OutgoingCommand) -> None:
        """Number an outgoing command and put it on the right send queue."""
        command = outgoing_command.command
        self.outgoing_data_total = (
            self.outgoing_data_total + command_size(command) + outgoing_command.fragment_length
        ) & _U32_MASK
        if command.channel_id == ALL_CHANNELS:
            self.outgoing_reliable_sequence_number = (
                self.outgoing_reliable_sequence_number + 1
            ) & _U16_MASK
            outgoing_command.reliable_sequence_number = self.outgoing_reliable_sequence_number
            outgoing_command.unreliable_sequence_number = 0
        else:
            channel = self.channels[command.channel_id]
            if command.acknowledge:
                channel.outgoing_reliable_sequence_number = (
                    channel.outgoing_reliable_sequence_number + 1
                ) & _U16_MASK
                channel.outgoing_unreliable_sequence_number = 0
                outgoing_command.reliable_sequence_number = (
                    channel.outgoing_reliable_sequence_number
                )
                outgoing_command.unreliable_sequence_number = 0
            elif command.unsequenced:
                self.outgoing_unsequenced_group = (
                    self.outgoing_unsequenced_group + 1
                ) & _U16_MASK
                outgoing_command.reliable_sequence_number = 0
                outgoing_command.unreliable_sequence_number = 0
            else:
                if outgoing_command.fragment_offset == 0:
                    channel.outgoing_unreliable_sequence_number = (
                        channel.outgoing_unreliable_sequence_number + 1
                    ) & _U16_MASK
                outgoing_command.reliable_sequence_number = (
                    channel.outgoing_reliable_sequence_number
                )
                outgoing_command.unreliable_sequence_number = (
                    channel.outgoing_unreliable_sequence_number
                )
        outgoing_command.send_attempts = 0
        outgoing_command.sent_time = 0
        outgoing_command.round_trip_timeout = 0
        command.reliable_sequence_number = outgoing_command.reliable_sequence_number
        outgoing_command.queue_time = self.host.next_queue_time()

        if command.type is CommandType.SEND_UNRELIABLE:
            command.unreliable_sequence_number = outgoing_command.unreliable_sequence_number
        elif command.type is CommandType.SEND_UNSEQUENCED:
            command.unsequenced_group = self.outgoing_unsequenced_group

        if command.acknowledge and outgoing_command.packet is not None:
            self.outgoing_send_reliable_commands.append(outgoing_command)
        else:
            self.outgoing_commands.append(outgoing_command)

    def queue_outgoing_command(
        self,
        command: Command,
        packet: Packet | None = None,
        offset: int = 0,
        length: int = 0,
    ) -> OutgoingCommand:
        """Queue a copy of a command, optionally carrying part of a packet."""
        outgoing = OutgoingCommand(
            command=dataclasses.replace(command),
            packet=packet,
            fragment_offset=offset,
            fragment_length=length,
        )
        if packet is not None:
            packet.reference_count += 1
        self.setup_outgoing_command(outgoing)
        return outgoing