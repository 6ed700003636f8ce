"""High-level pairing operations: watch, approve, fold, revoke, verify."""

import time
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, ContextManager, TypeVar

from loguru import logger

from pairgate.config.loader import get_data_dir
from pairgate.config.schema import Config
from pairgate.errors import RequestNotFoundError, ServiceStopError
from pairgate.pairing.approval import (
    FoldResult,
    approve,
    check_paired_mode,
    fold_allow_from,
    is_approved,
    remove_allow_from,
    revoke,
)
from pairgate.pairing.store import AllowFromAccessor, PairingStoreAccessor, StoreLock, WriteReport, ownership_from_config
from pairgate.pairing.types import ApprovedEntry, PairingRequest
from pairgate.pairing.watcher import PairingWatcher
from pairgate.service.lifecycle import CoordinationResult, LifecycleCoordinator
from pairgate.service.manager import ServiceManager, build_service_manager
from pairgate.transport import Transport, build_transport
from pairgate.transport.types import FileOwnership, FileStat

T = TypeVar("T")


@dataclass
class ApprovalRecord:
    entry: ApprovedEntry
    write: WriteReport
    verified: bool = False


@dataclass
class FoldRecord:
    fold: FoldResult
    store_write: WriteReport
    allow_from_write: WriteReport


@dataclass
class RevokeRecord:
    removed_ids: tuple[str, ...]
    write: WriteReport


@dataclass
class StoreInspection:
    """Snapshot of the pairing files on the target host."""
    path: str
    target: str
    stat: FileStat | None
    expected: FileOwnership
    pending: int = 0
    approved: int = 0
    allowed: int = 0

    @property
    def exists(self) -> bool:
        return self.stat is not None

    @property
    def permissions_ok(self) -> bool:
        return self.stat is not None and self.stat.matches(self.expected)


class PairingManager:
    """
    Wires transport, store accessors, service coordinator and watcher.

    Every mutation runs under the advisory store lock (when enabled) and
    inside LifecycleCoordinator.run(), so the gateway is stopped while the
    file changes.
    """

    def __init__(
        self,
        config: Config,
        transport: Transport | None = None,
        service: ServiceManager | None = None,
        lock_dir: Path | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.transport = transport or build_transport(config.remote)
        self.store = PairingStoreAccessor.from_config(self.transport, config.pairing)
        self.allow_from = AllowFromAccessor.from_config(self.transport, config.pairing)
        self.service = service or build_service_manager(self.transport, config.service)
        self.coordinator = LifecycleCoordinator(self.service, config.service, clock=clock, sleep=sleep)
        self.watcher = PairingWatcher(
            self.store,
            poll_interval=config.watch.poll_interval_seconds,
            progress_every=config.watch.progress_every,
            clock=clock,
            sleep=sleep,
        )
        self._lock_dir = lock_dir or get_data_dir() / "locks"

    # ── reads ──────────────────────────────────────────────────────

    def pending(self) -> tuple[PairingRequest, ...]:
        return self.store.read().requests

    def approved(self) -> tuple[ApprovedEntry, ...]:
        return self.store.read().approved

    def allowed(self) -> tuple[str, ...]:
        return self.allow_from.read().allow_from

    def verify(self, id: str, code: str | None = None) -> bool:
        """Re-read the store and check that the pair is approved."""
        ok = is_approved(self.store.read(), id, code)
        if ok:
            logger.info(f"Pairing verified: user {id} is approved")
        else:
            logger.warning(f"Pairing verification failed: user {id} not found in approved list")
        return ok

    def inspect(self) -> StoreInspection:
        store = self.store.read()
        return StoreInspection(
            path=self.store.path,
            target=self.transport.describe(),
            stat=self.store.inspect(),
            expected=ownership_from_config(self.config.pairing),
            pending=len(store.requests),
            approved=len(store.approved),
            allowed=len(self.allow_from.read().allow_from),
        )

    def watch(
        self,
        timeout: float | None = None,
        user_id: str | None = None,
        ignore_existing: bool = False,
    ) -> PairingRequest:
        timeout = self.config.watch.timeout_seconds if timeout is None else timeout
        return self.watcher.watch(timeout, user_id=user_id, ignore_existing=ignore_existing)

    # ── mutations ──────────────────────────────────────────────────

    def lock(self) -> ContextManager:
        if not self.config.pairing.use_lock:
            return nullcontext()
        return StoreLock(
            self._lock_dir,
            self.transport.describe(),
            self.store.path,
            timeout=self.config.pairing.lock_timeout_seconds,
        )

    def _coordinate(self, mutation: Callable[[], T], restart: bool) -> CoordinationResult[T]:
        if restart:
            return self.coordinator.run(mutation)

        # Offline mode: caller promises the gateway is down; check before touching the file.
        status = self.service.status()
        if not status.stopped:
            raise ServiceStopError(
                f"{self.service.label} is '{status.state}'; refusing to modify the store while it may be running",
                remediation=f"Stop it first: {self.service.manual_command('stop')}",
            )
        try:
            value = mutation()
        except RequestNotFoundError as e:
            logger.info(f"Nothing to change: {e}")
            return CoordinationResult(success=True, noop=True, service_running=False)
        return CoordinationResult(success=True, mutated=True, service_running=False, value=value)

    def approve(
        self,
        id: str,
        code: str,
        restart: bool = True,
        force: bool = False,
    ) -> CoordinationResult[ApprovalRecord]:
        """
        Approve a pending ``(id, code)`` pair.

        An already-approved pair returns a successful no-op without touching
        the service, so retry loops are safe.

        Raises:
            RequestNotFoundError: the pair is neither pending nor approved.
            StoreMalformedError: the store could not be parsed.
            SchemaMixError: the store's identities live in allowFrom.
        """
        with self.lock():
            current = self.store.read()
            if current.find_pending(id, code) is None:
                if is_approved(current, id, code):
                    logger.info(f"User {id} with code {code} is already approved")
                    return CoordinationResult(success=True, noop=True)
                raise RequestNotFoundError(
                    f"Pairing request not found for user {id} with code {code}",
                    remediation="Run 'pairgate pairing list' to see pending requests",
                )
            check_paired_mode(self.allow_from.read(), force=force)

            def mutation() -> ApprovalRecord:
                # Re-read: the gateway may have written between the check and the stop.
                new_store, entry = approve(self.store.read(), id, code)
                return ApprovalRecord(entry=entry, write=self.store.write(new_store))

            result = self._coordinate(mutation, restart)
            if result.mutated and result.value is not None:
                result.value.verified = self.verify(id, code)
            return result

    def approve_all(self, restart: bool = True, force: bool = False) -> CoordinationResult[FoldRecord]:
        """Fold every pending request into the allowFrom list."""
        with self.lock():
            current = self.store.read()
            # Validate up front so nothing stops the gateway for an impossible fold.
            fold_allow_from(current, self.allow_from.read(), force=force)

            def mutation() -> FoldRecord:
                fold = fold_allow_from(self.store.read(), self.allow_from.read(), force=force)
                # allowFrom first: if the store write fails the requests are still pending and can be re-folded.
                allow_write = self.allow_from.write(fold.allow_from)
                store_write = self.store.write(fold.store)
                return FoldRecord(fold=fold, store_write=store_write, allow_from_write=allow_write)

            return self._coordinate(mutation, restart)

    def revoke(
        self,
        id: str,
        code: str | None = None,
        allow_from: bool = False,
        restart: bool = True,
    ) -> CoordinationResult[RevokeRecord]:
        """Remove an identity from ``approved`` (or from the allowFrom list)."""
        with self.lock():
            if allow_from:
                remove_allow_from(self.allow_from.read(), id)

                def mutation() -> RevokeRecord:
                    updated = remove_allow_from(self.allow_from.read(), id)
                    return RevokeRecord(removed_ids=(id,), write=self.allow_from.write(updated))
            else:
                revoke(self.store.read(), id, code)

                def mutation() -> RevokeRecord:
                    new_store, removed = revoke(self.store.read(), id, code)
                    return RevokeRecord(
                        removed_ids=tuple(e.id for e in removed),
                        write=self.store.write(new_store),
                    )

            return self._coordinate(mutation, restart)

    def auto_pair(
        self,
        timeout: float | None = None,
        user_id: str | None = None,
        ignore_existing: bool = False,
        force: bool = False,
    ) -> tuple[PairingRequest, CoordinationResult[ApprovalRecord]]:
        """Wait for a request, then approve it under lifecycle coordination."""
        request = self.watch(timeout, user_id=user_id, ignore_existing=ignore_existing)
        return request, self.approve(request.id, request.code, force=force)
