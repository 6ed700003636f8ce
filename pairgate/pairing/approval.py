"""Approval transactions over the pairing store.

All functions are pure: they return new store values and leave their
inputs untouched, so a failed call cannot leave a partial mutation behind.
"""

from dataclasses import dataclass, replace

from pairgate.errors import RequestNotFoundError, SchemaMixError
from pairgate.pairing.types import AllowFromList, ApprovedEntry, PairingRequest, PairingStore, utc_now_iso


@dataclass(frozen=True)
class FoldResult:
    """Outcome of folding pending requests into the allowFrom list."""
    store: PairingStore
    allow_from: AllowFromList
    folded_ids: tuple[str, ...]
    added_ids: tuple[str, ...]


def approve(
    store: PairingStore,
    id: str,
    code: str,
    now: str | None = None,
) -> tuple[PairingStore, ApprovedEntry]:
    """
    Move the pending ``(id, code)`` request into ``approved``.

    Matching is exact and case-sensitive. Only the matching request is
    removed; other requests for the same id stay pending.

    Raises:
        RequestNotFoundError: the pair is not pending (possibly already approved).
    """
    request = store.find_pending(id, code)
    if request is None:
        raise RequestNotFoundError(f"No pending pairing request for user {id} with code {code}")

    entry = ApprovedEntry.from_request(request, approved_at=now or utc_now_iso())
    remaining = tuple(r for r in store.requests if not (r.id == id and r.code == code))
    new_store = replace(store, requests=remaining, approved=store.approved + (entry,))
    return new_store, entry


def fold_allow_from(store: PairingStore, allow_from: AllowFromList, force: bool = False) -> FoldResult:
    """
    Bulk-approve every pending request into the flattened allowFrom list.

    Each id is appended at most once and ``requests`` is cleared. The
    per-request code is discarded.

    Raises:
        RequestNotFoundError: nothing is pending.
        SchemaMixError: the store already uses paired ``approved`` entries.
    """
    if store.approved and not force:
        raise SchemaMixError(
            "Store already holds paired approvals; folding into allowFrom would mix schemas",
            remediation="Approve requests individually, or pass --force to fold anyway",
        )
    if not store.requests:
        raise RequestNotFoundError("No pending pairing requests to approve")

    folded: list[str] = []
    for request in store.requests:
        if request.id not in folded:
            folded.append(request.id)

    existing = list(allow_from.allow_from)
    added = [i for i in folded if i not in existing]
    new_allow = replace(allow_from, allow_from=tuple(existing + added))
    return FoldResult(
        store=replace(store, requests=()),
        allow_from=new_allow,
        folded_ids=tuple(folded),
        added_ids=tuple(added),
    )


def check_paired_mode(allow_from: AllowFromList, force: bool = False) -> None:
    """Refuse paired approval on a store whose identities live in allowFrom."""
    if allow_from.allow_from and not force:
        raise SchemaMixError(
            "An allowFrom list is in use for this store; paired approval would mix schemas",
            remediation="Use 'pairing approve-all', or pass --force to approve anyway",
        )


def revoke(
    store: PairingStore,
    id: str,
    code: str | None = None,
) -> tuple[PairingStore, tuple[ApprovedEntry, ...]]:
    """
    Remove approved entries for ``id`` (or for the exact ``(id, code)`` pair).

    Raises:
        RequestNotFoundError: nothing matched.
    """
    def matches(entry: ApprovedEntry) -> bool:
        return entry.id == id and (code is None or entry.code == code)

    removed = tuple(a for a in store.approved if matches(a))
    if not removed:
        raise RequestNotFoundError(f"User {id} is not in the approved list")
    return replace(store, approved=tuple(a for a in store.approved if not matches(a))), removed


def remove_allow_from(allow_from: AllowFromList, id: str) -> AllowFromList:
    """
    Drop ``id`` from the allowFrom list.

    Raises:
        RequestNotFoundError: the id is not listed.
    """
    if id not in allow_from.allow_from:
        raise RequestNotFoundError(f"User {id} was not in the allow list")
    return replace(allow_from, allow_from=tuple(i for i in allow_from.allow_from if i != id))


def is_approved(store: PairingStore, id: str, code: str | None = None) -> bool:
    return any(a.id == id and (code is None or a.code == code) for a in store.approved)


def find_request(store: PairingStore, id: str | None = None) -> PairingRequest | None:
    """Most recently appended request, optionally restricted to one identity."""
    candidates = [r for r in store.requests if id is None or r.id == id]
    return candidates[-1] if candidates else None
