"""Type definitions for local and remote execution."""

from dataclasses import dataclass


@dataclass
class FileOwnership:
    """Owner and permission bits a pairing file must carry."""
    uid: int = 1000
    gid: int = 1000
    mode: int = 0o600

    def describe(self) -> str:
        return f"{self.mode:o} {self.uid}:{self.gid}"


@dataclass
class CommandResult:
    """Result of running a command on a transport."""
    success: bool
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    timed_out: bool = False

    @property
    def message(self) -> str:
        """Best available one-line explanation of a failure."""
        if self.error:
            return self.error
        text = (self.stderr or self.stdout or "").strip()
        if text:
            return text.splitlines()[-1]
        return f"exit code {self.exit_code}"


@dataclass
class PermissionReport:
    """Outcome of re-applying ownership and mode to a file."""
    ok: bool
    error: str | None = None


@dataclass
class FileStat:
    """Ownership and mode observed on a file."""
    uid: int
    gid: int
    mode: int

    def matches(self, ownership: FileOwnership) -> bool:
        return (self.uid, self.gid, self.mode) == (ownership.uid, ownership.gid, ownership.mode)

    def describe(self) -> str:
        return f"{self.mode:o} {self.uid}:{self.gid}"
