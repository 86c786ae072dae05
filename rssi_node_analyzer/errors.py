"""Error taxonomy shared by the node client, scheduler and engine.

This module must not import any other package module so every layer can
raise and catch the same types.
"""


class NodeError(Exception):
    """Base class for failures talking to the receiver node."""


class ChannelError(NodeError):
    """I/O failure or timeout on the byte stream."""


class ProtocolError(NodeError):
    """Response with the wrong length or a bad checksum."""


class ConfigError(ValueError):
    """Configuration input rejected before it reaches the device."""
