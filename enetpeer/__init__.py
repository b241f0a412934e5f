"""Peer state, command queues and in-order dispatch for a reliable UDP protocol."""

__version__ = "0.4.0"
__all__ = ["protocol", "state", "host", "peer", "incoming"]