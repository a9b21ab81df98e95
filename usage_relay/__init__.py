"""Relay Claude usage snapshots from an authenticated poller to a local subscriber."""

__version__ = "0.1.0"
