"""Local and remote execution transports."""

from pairgate.config.schema import RemoteConfig
from pairgate.transport.base import Transport
from pairgate.transport.local import LocalTransport
from pairgate.transport.remote import RemoteTransport
from pairgate.transport.types import CommandResult, FileOwnership, FileStat, PermissionReport


def build_transport(config: RemoteConfig) -> Transport:
    """Remote when a host is configured, local otherwise."""
    if config.enabled:
        return RemoteTransport(config)
    return LocalTransport()


__all__ = [
    "Transport",
    "LocalTransport",
    "RemoteTransport",
    "CommandResult",
    "FileOwnership",
    "FileStat",
    "PermissionReport",
    "build_transport",
]
