"""Server side of an in-game browser bridge: packets, TLS transport, server and plugin core."""

__version__ = "0.1.0"