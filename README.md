# enetpeer

The per-peer half of a reliable-UDP protocol in pure Python. A `Peer` keeps
the state of one remote end: its channels, sequence numbers, outgoing and
incoming command queues, pending acknowledgements, packet throttle, timeout
parameters and the connect/disconnect state machine.

A `Host` holds what its peers share: the settings (MTU, maximum packet size,
waiting-data limit, whether the extended header and checksums are in use),
the connected-peer counters, the queue time counter and the dispatch queue.

## Installing

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `enetpeer.protocol`: `CommandType`, `CommandFlag`, the `Command` record
  (with its `type`, `acknowledge` and `unsequenced` properties) and
  `command_size()`, which gives the wire size of a command.
- `enetpeer.state`: `PeerState`, `PacketFlag`, `PeerSendError`, `Packet`,
  `Channel`, `Acknowledgement`, `OutgoingCommand` and `IncomingCommand`,
  plus the protocol and peer default constants.
- `enetpeer.host`: `HostSettings` and `Host`, with `flush()`,
  `schedule_dispatch()` and `next_queue_time()`.
- `enetpeer.peer`: `Peer`, with sending, receiving, pinging, throttling,
  timeouts, acknowledgements and disconnecting.
- `enetpeer.incoming`: `queue_incoming_command()`,
  `dispatch_incoming_reliable_commands()`,
  `dispatch_incoming_unreliable_commands()` and `remove_incoming_commands()`,
  which put received commands in order and hand over those that are ready.

## Sending

```python
from enetpeer.host import Host
from enetpeer.peer import Peer
from enetpeer.state import Packet, PacketFlag, PeerState

host = Host()
peer = Peer(host)
peer.setup_channels(2)
peer.state = PeerState.CONNECTED

peer.send(0, Packet(b"hello", PacketFlag.RELIABLE))
assert peer.has_outgoing_commands()
```

`send` numbers the command and puts it on one of the peer's queues:
reliable commands that carry a packet go to `outgoing_send_reliable_commands`,
everything else to `outgoing_commands`. A packet longer than the space left in
one MTU (after the header, the fragment command and, if enabled, the checksum)
is split into fragments; packets flagged `UNRELIABLE_FRAGMENT` without
`RELIABLE` are sent as unreliable fragments.

`send` raises `PeerSendError` when the peer is not connected, the channel does
not exist, the packet is larger than the host's `maximum_packet_size`, or it
would need more fragments than the protocol allows. The error's `reason`
attribute says which.

## Receiving

A received command goes through
`enetpeer.incoming.queue_incoming_command(peer, command, data, flags, fragment_count)`.
It returns the queued `IncomingCommand`, or `None` when the command is a
duplicate or falls outside the receive window. It raises `ValueError` when a
fragmented command is discarded, when the peer already has
`maximum_waiting_data` bytes waiting, or when there are too many fragments.

Commands that can be delivered in order move to the peer's
`dispatched_commands`, and the peer is put on the host's dispatch queue.
`Peer.receive()` then hands them back one at a time as
`(channel_id, packet)`, or `None` when nothing is waiting.

`Peer.queue_acknowledgement(command, sent_time)` records a received command
to be acknowledged, or returns `None` when its reliable window must not be
acknowledged yet.

## Throttle, pings and timeouts

- `throttle(rtt)` raises, lowers or resets `packet_throttle` from a measured
  round trip time and returns `1`, `-1` or `0`.
- `throttle_configure(interval, acceleration, deceleration)` stores the
  parameters and queues a throttle-configure command.
- `ping()` queues a ping when connected; `set_ping_interval(0)` and
  `timeout(0, 0, 0)` restore the defaults.

## Disconnecting

- `disconnect(data)` clears the queues and queues a disconnect. A connected
  peer sends it acknowledged and moves to `DISCONNECTING`; otherwise it is
  sent unsequenced, the host is flushed and the peer is reset.
- `disconnect_later(data)` moves a connected peer with commands still queued
  to `DISCONNECT_LATER`; otherwise it calls `disconnect(data)`.
- `disconnect_now(data)` queues an unsequenced disconnect, flushes the host
  and resets the peer at once.

## What this package does not do

It opens no sockets and encodes nothing on the wire. `Host.flush()` only
counts the flush and calls the `flush_handler` given to the `Host`; writing
the queued commands out, retransmitting reliable commands, handling timeouts,
copying fragment data into a reassembled packet and sending acknowledgements
are left to that caller.