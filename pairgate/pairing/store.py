"""Pairing store accessor: read, backup, atomic write, ownership repair."""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generic, Protocol, TypeVar

from filelock import FileLock, Timeout
from loguru import logger

from pairgate.config.schema import PairingConfig
from pairgate.errors import StoreLockedError, StoreMalformedError
from pairgate.pairing.types import AllowFromList, PairingStore
from pairgate.transport.base import Transport
from pairgate.transport.types import FileOwnership, FileStat


class _Document(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


D = TypeVar("D", bound=_Document)


@dataclass
class WriteReport:
    """What a write did. A permission failure does not fail the write."""
    path: str
    backup_path: str | None = None
    permissions_ok: bool = True
    permission_error: str | None = None


def backup_name(path: str, now: datetime | None = None) -> str:
    """Timestamped backup path; microseconds keep names unique per write."""
    now = now or datetime.now(timezone.utc)
    return f"{path}.backup-{now:%Y%m%d-%H%M%S-%f}"


class JsonDocumentAccessor(Generic[D]):
    """
    Reads and writes one versioned JSON document through a transport.

    A missing file reads as the empty document; invalid content raises
    StoreMalformedError and is never repaired. Writes take a backup of the
    prior file first, replace the file atomically and then re-apply the
    ownership contract unconditionally.
    """

    label = "document"

    def __init__(
        self,
        transport: Transport,
        path: str,
        ownership: FileOwnership,
        backups: bool = True,
    ):
        self.transport = transport
        self.path = transport.expand_path(path)
        self.ownership = ownership
        self.backups = backups

    def _decode(self, data: Any) -> D:
        raise NotImplementedError

    def _empty(self) -> D:
        raise NotImplementedError

    def read(self) -> D:
        remediation = f"Inspect the file or restore a {Path(self.path).name}.backup-* copy"
        try:
            text = self.transport.read_text(self.path)
        except UnicodeDecodeError as e:
            raise StoreMalformedError(f"{self.label} {self.path} is not valid UTF-8: {e}", remediation) from e
        if text is None:
            return self._empty()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise StoreMalformedError(f"{self.label} {self.path} is not valid JSON: {e}", remediation) from e
        try:
            return self._decode(data)
        except StoreMalformedError as e:
            raise StoreMalformedError(f"{self.label} {self.path}: {e}", e.remediation) from e

    def exists(self) -> bool:
        return self.transport.exists(self.path)

    def inspect(self) -> FileStat | None:
        return self.transport.stat(self.path)

    def backup(self) -> str | None:
        """Copy the current file to a new timestamped backup. None if no file."""
        if not self.transport.exists(self.path):
            return None
        dst = backup_name(self.path)
        if not self.transport.copy_exclusive(self.path, dst):
            # Same microsecond as an earlier backup; never overwrite it.
            dst = backup_name(self.path, datetime.now(timezone.utc))
            if not self.transport.copy_exclusive(self.path, dst):
                raise OSError(f"Backup target already exists: {dst}")
        logger.info(f"Backed up {self.path} to {dst}")
        return dst

    def serialize(self, document: D) -> str:
        data = document.to_dict()
        if "version" not in data:
            raise ValueError(f"Refusing to write {self.label} without a version")
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    def write(self, document: D) -> WriteReport:
        text = self.serialize(document)
        backup_path = self.backup() if self.backups else None

        report = self.transport.write_text_atomic(self.path, text, self.ownership)
        if report.ok:
            report = self.transport.fix_permissions(self.path, self.ownership)

        if not report.ok:
            logger.warning(
                f"Could not apply {self.ownership.describe()} to {self.path}: {report.error}. "
                "The gateway may be unable to read it."
            )
        return WriteReport(
            path=self.path,
            backup_path=backup_path,
            permissions_ok=report.ok,
            permission_error=report.error,
        )


class PairingStoreAccessor(JsonDocumentAccessor[PairingStore]):
    """Accessor for the pairing requests/approved file."""

    label = "pairing store"

    def _decode(self, data: Any) -> PairingStore:
        return PairingStore.from_dict(data)

    def _empty(self) -> PairingStore:
        return PairingStore.empty()

    @classmethod
    def from_config(cls, transport: Transport, config: PairingConfig) -> "PairingStoreAccessor":
        return cls(transport, config.pairing_file, ownership_from_config(config), config.backups)


class AllowFromAccessor(JsonDocumentAccessor[AllowFromList]):
    """Accessor for the flattened allowFrom identity list."""

    label = "allowFrom file"

    def _decode(self, data: Any) -> AllowFromList:
        return AllowFromList.from_dict(data)

    def _empty(self) -> AllowFromList:
        return AllowFromList.empty()

    @classmethod
    def from_config(cls, transport: Transport, config: PairingConfig) -> "AllowFromAccessor":
        return cls(transport, config.allow_from_path, ownership_from_config(config), config.backups)


def ownership_from_config(config: PairingConfig) -> FileOwnership:
    return FileOwnership(uid=config.owner_uid, gid=config.owner_gid, mode=config.file_mode)


class StoreLock:
    """
    Advisory lock serialising administrator flows against one store.

    The lock file lives on the control host, keyed by target and path, so it
    also covers remote stores as long as administrators share a host.
    """

    def __init__(self, lock_dir: Path, target: str, store_path: str, timeout: float = 10.0):
        digest = hashlib.sha1(f"{target}:{store_path}".encode()).hexdigest()[:16]
        lock_dir.mkdir(parents=True, exist_ok=True)
        self.lock_path = lock_dir / f"{digest}.lock"
        self.timeout = timeout
        self._lock = FileLock(self.lock_path, timeout=timeout)

    def __enter__(self) -> "StoreLock":
        try:
            self._lock.acquire()
        except Timeout as e:
            raise StoreLockedError(
                f"Another pairing operation holds {self.lock_path} (waited {self.timeout:g}s)",
                remediation="Wait for the other operation to finish and retry",
            ) from e
        return self

    def __exit__(self, *exc) -> None:
        self._lock.release()
