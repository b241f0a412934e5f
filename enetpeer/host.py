"""The host side that peers share: limits, counters, the dispatch queue and flushing."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

HOST_DEFAULT_MTU = 1392
HOST_DEFAULT_MAXIMUM_PACKET_SIZE = 32 * 1024 * 1024
HOST_DEFAULT_MAXIMUM_WAITING_DATA = 32 * 1024 * 1024

_U32_MASK = 0xFFFFFFFF


@dataclass(frozen=True)
class HostSettings:
    """Limits and options a host applies to all of its peers."""

    mtu: int = HOST_DEFAULT_MTU
    maximum_packet_size: int = HOST_DEFAULT_MAXIMUM_PACKET_SIZE
    maximum_waiting_data: int = HOST_DEFAULT_MAXIMUM_WAITING_DATA
    using_new_packet: bool = False
    checksum: bool = False

    def __post_init__(self) -> None:
        for name in ("mtu", "maximum_packet_size", "maximum_waiting_data"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")


@dataclass(eq=False)
class Host:
    """State shared between the peers of one host.

    Sending datagrams is left to ``flush_handler``, which is called with the
    host each time the host is flushed.
    """

    settings: HostSettings = field(default_factory=HostSettings)
    flush_handler: Callable[[Host], Any] | None = None
    bandwidth_limited_peers: int = 0
    connected_peers: int = 0
    total_queued: int = 0
    flush_count: int = 0
    dispatch_queue: list[Any] = field(default_factory=list)

    @property
    def mtu(self) -> int:
        return self.settings.mtu

    @property
    def maximum_packet_size(self) -> int:
        return self.settings.maximum_packet_size

    @property
    def maximum_waiting_data(self) -> int:
        return self.settings.maximum_waiting_data

    @property
    def using_new_packet(self) -> bool:
        return self.settings.using_new_packet

    @property
    def checksum(self) -> bool:
        return self.settings.checksum

    def flush(self) -> None:
        """Send whatever the peers have queued, through the flush handler."""
        self.flush_count += 1
        if self.flush_handler is not None:
            self.flush_handler(self)

    def schedule_dispatch(self, peer: Any) -> bool:
        """Put a peer on the dispatch queue; return False if it was already there."""
        if any(queued is peer for queued in self.dispatch_queue):
            return False
        self.dispatch_queue.append(peer)
        return True

    def next_queue_time(self) -> int:
        """Advance the count of queued commands and return it as the queue time."""
        self.total_queued = (self.total_queued + 1) & _U32_MASK
        return self.total_queued