"""Loxone Miniserver bridge: state synchronization and command acknowledgement engine."""

__version__ = "3.1.0"
