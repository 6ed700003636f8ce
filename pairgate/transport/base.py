"""Transport interface shared by local and remote execution."""

from abc import ABC, abstractmethod

from pairgate.transport.types import CommandResult, FileOwnership, FileStat, PermissionReport


class Transport(ABC):
    """
    Capability set the pairing core needs from a host.

    Implementations must keep writes atomic: the live file is only ever
    replaced by a rename of a fully written sibling.
    """

    name: str = "transport"

    @abstractmethod
    def expand_path(self, path: str) -> str:
        """Resolve a configured path for this host."""

    @abstractmethod
    def read_text(self, path: str) -> str | None:
        """Return file content, or None if the file does not exist."""

    @abstractmethod
    def write_text_atomic(self, path: str, text: str, ownership: FileOwnership) -> PermissionReport:
        """Atomically replace ``path`` with ``text`` and apply ownership."""

    @abstractmethod
    def copy_exclusive(self, src: str, dst: str) -> bool:
        """Copy ``src`` to ``dst`` unless ``dst`` exists. Returns True if copied."""

    @abstractmethod
    def fix_permissions(self, path: str, ownership: FileOwnership) -> PermissionReport:
        """Re-apply owner and mode to an existing file."""

    @abstractmethod
    def stat(self, path: str) -> FileStat | None:
        """Return ownership and mode of ``path``, or None if missing."""

    @abstractmethod
    def run(self, argv: list[str], timeout: float | None = None, cwd: str | None = None) -> CommandResult:
        """Run a command and capture its output."""

    @abstractmethod
    def probe_http(self, url: str, timeout: float = 5.0) -> int | None:
        """Return the HTTP status of a GET to ``url``, or None if unreachable."""

    def exists(self, path: str) -> bool:
        return self.stat(path) is not None

    def describe(self) -> str:
        return self.name
