import pytest

from enetpeer.host import Host, HostSettings
from enetpeer.incoming import (
    dispatch_incoming_reliable_commands,
    dispatch_incoming_unreliable_commands,
    queue_incoming_command,
    remove_incoming_commands,
)
from enetpeer.peer import Peer
from enetpeer.protocol import Command, CommandFlag, CommandType
from enetpeer.state import (
    PEER_FREE_RELIABLE_WINDOWS,
    PEER_RELIABLE_WINDOW_SIZE,
    PROTOCOL_MAXIMUM_FRAGMENT_COUNT,
    IncomingCommand,
    Packet,
    PeerState,
)


def make_peer(settings=None):
    host = Host(settings=settings or HostSettings())
    peer = Peer(host)
    peer.setup_channels(1)
    peer.state = PeerState.CONNECTED
    return peer


def reliable(rsn):
    return Command(
        command=CommandType.SEND_RELIABLE | CommandFlag.ACKNOWLEDGE,
        channel_id=0,
        reliable_sequence_number=rsn,
    )


def unreliable(rsn, usn):
    return Command(
        command=int(CommandType.SEND_UNRELIABLE),
        channel_id=0,
        reliable_sequence_number=rsn,
        unreliable_sequence_number=usn,
    )


def test_reliable_in_order_is_dispatched():
    peer = make_peer()
    queued = queue_incoming_command(peer, reliable(1), b"hello")
    assert queued is not None
    assert peer.channels[0].incoming_reliable_sequence_number == 1
    assert peer.host.dispatch_queue == [peer]
    assert peer.needs_dispatch
    channel_id, packet = peer.receive()
    assert channel_id == 0
    assert packet.data == b"hello"
    assert peer.total_waiting_data == 0


def test_out_of_order_reliable_waits_then_dispatches_in_order():
    peer = make_peer()
    queue_incoming_command(peer, reliable(2), b"second")
    assert peer.dispatched_commands == []
    assert len(peer.channels[0].incoming_reliable_commands) == 1
    queue_incoming_command(peer, reliable(1), b"first")
    assert [peer.receive()[1].data for _ in range(2)] == [b"first", b"second"]
    assert peer.channels[0].incoming_reliable_commands == []
    assert peer.channels[0].incoming_reliable_sequence_number == 2


def test_duplicate_reliable_is_dropped():
    peer = make_peer()
    queue_incoming_command(peer, reliable(1), b"a")
    assert queue_incoming_command(peer, reliable(1), b"a") is None
    assert len(peer.dispatched_commands) == 1


def test_duplicate_pending_reliable_is_dropped():
    peer = make_peer()
    queue_incoming_command(peer, reliable(3), b"a")
    assert queue_incoming_command(peer, reliable(3), b"a") is None
    assert len(peer.channels[0].incoming_reliable_commands) == 1


def test_disconnect_later_discards():
    peer = make_peer()
    peer.state = PeerState.DISCONNECT_LATER
    assert queue_incoming_command(peer, reliable(1), b"x") is None
    with pytest.raises(ValueError):
        queue_incoming_command(peer, reliable(1), b"x", fragment_count=2)
    assert peer.dispatched_commands == []


def test_out_of_window_is_dropped():
    peer = make_peer()
    far = PEER_RELIABLE_WINDOW_SIZE * PEER_FREE_RELIABLE_WINDOWS
    assert queue_incoming_command(peer, reliable(far), b"x") is None
    assert peer.channels[0].incoming_reliable_commands == []


def test_unsequenced_is_dispatched_at_once():
    peer = make_peer()
    command = Command(
        command=CommandType.SEND_UNSEQUENCED | CommandFlag.UNSEQUENCED,
        channel_id=0,
        unsequenced_group=1,
    )
    queue_incoming_command(peer, command, b"u")
    assert peer.receive()[1].data == b"u"
    assert peer.channels[0].incoming_unreliable_commands == []


def test_unreliable_dispatch_and_duplicate():
    peer = make_peer()
    queued = queue_incoming_command(peer, unreliable(0, 1), b"u1")
    assert queued.unreliable_sequence_number == 1
    assert peer.channels[0].incoming_unreliable_sequence_number == 1
    assert peer.receive()[1].data == b"u1"
    assert queue_incoming_command(peer, unreliable(0, 1), b"u1") is None


def test_unreliable_waits_for_its_reliable():
    peer = make_peer()
    queue_incoming_command(peer, unreliable(1, 1), b"later")
    assert peer.dispatched_commands == []
    assert len(peer.channels[0].incoming_unreliable_commands) == 1
    queue_incoming_command(peer, reliable(1), b"first")
    assert [peer.receive()[1].data for _ in range(2)] == [b"first", b"later"]
    assert peer.channels[0].incoming_unreliable_commands == []


def test_fragmented_reliable_waits_for_fragments():
    peer = make_peer()
    command = Command(
        command=CommandType.SEND_FRAGMENT | CommandFlag.ACKNOWLEDGE,
        channel_id=0,
        reliable_sequence_number=1,
        fragment_count=2,
    )
    queued = queue_incoming_command(peer, command, bytes(8), fragment_count=2)
    assert queued.fragments_remaining == 2
    assert peer.dispatched_commands == []
    assert queued.mark_fragment(0)
    assert queued.mark_fragment(1)
    dispatch_incoming_reliable_commands(peer, peer.channels[0], queued)
    assert peer.dispatched_commands == [queued]
    assert peer.channels[0].incoming_reliable_sequence_number == 2


def test_waiting_data_limit():
    peer = make_peer(HostSettings(maximum_waiting_data=4))
    queue_incoming_command(peer, reliable(2), b"abcd")
    assert peer.total_waiting_data == 4
    with pytest.raises(ValueError):
        queue_incoming_command(peer, reliable(3), b"efgh")
    assert len(peer.channels[0].incoming_reliable_commands) == 1


def test_too_many_fragments():
    peer = make_peer()
    count = PROTOCOL_MAXIMUM_FRAGMENT_COUNT + 1
    command = Command(
        command=CommandType.SEND_FRAGMENT | CommandFlag.ACKNOWLEDGE,
        channel_id=0,
        reliable_sequence_number=1,
    )
    with pytest.raises(ValueError):
        queue_incoming_command(peer, command, b"x", fragment_count=count)
    assert peer.channels[0].incoming_reliable_commands == []


def test_unhandled_command_type_is_dropped():
    peer = make_peer()
    command = Command(
        command=CommandType.PING | CommandFlag.ACKNOWLEDGE,
        channel_id=0,
        reliable_sequence_number=1,
    )
    assert queue_incoming_command(peer, command, b"") is None
    assert peer.dispatched_commands == []


def test_remove_incoming_commands_keeps_excluded():
    packets = [Packet(data=b"p", reference_count=1) for _ in range(3)]
    queue = [IncomingCommand(packet=packet) for packet in packets]
    keep = queue[1]
    removed = remove_incoming_commands(queue, 0, 3, keep)
    assert removed == 2
    assert queue == [keep]
    assert [packet.reference_count for packet in packets] == [0, 1, 0]


def test_remove_incoming_commands_respects_range():
    queue = [IncomingCommand(packet=Packet(reference_count=1)) for _ in range(4)]
    tail = queue[2:]
    assert remove_incoming_commands(queue, 0, 2, None) == 2
    assert queue == tail


def test_dispatch_unreliable_drops_stale_commands():
    peer = make_peer()
    channel = peer.channels[0]
    stale = IncomingCommand(
        command=unreliable(0, 1),
        packet=Packet(data=b"s", reference_count=1),
        reliable_sequence_number=0,
        unreliable_sequence_number=1,
    )
    channel.incoming_reliable_sequence_number = PEER_RELIABLE_WINDOW_SIZE * 2
    channel.incoming_unreliable_commands.append(stale)
    dispatch_incoming_unreliable_commands(peer, channel, None)
    assert channel.incoming_unreliable_commands == []
    assert peer.dispatched_commands == []
    assert stale.packet.reference_count == 0