"""Building blocks for a MySQL-protocol database proxy: wire encoding, packet framing, handshakes, namespaces, rate limiting and metrics."""

__version__ = "0.1.0"