"""Configuration, identity, Cincinnati and FleetLock clients, and rpm-ostree control for OS updates."""

__version__ = "0.1.0"