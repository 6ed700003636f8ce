"""Pairing store data model.

Field names are snake_case in Python and camelCase on disk. Optional fields
that are absent on disk stay absent when written back, and unknown keys are
carried in ``extra`` so that a read/write cycle never loses data the gateway
put there.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from pairgate.errors import StoreMalformedError

STORE_VERSION = 1

# meta is passthrough: display name, account id, ...
MetaValue = str | int | float | bool | None

_REQUEST_KEYS = ("id", "code", "createdAt", "lastSeenAt", "meta")


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp written with either Z or +00:00."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require_str(data: dict, key: str, where: str, allow_number: bool = False) -> str:
    value = data.get(key)
    if allow_number and isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value:
        raise StoreMalformedError(f"{where}: '{key}' must be a non-empty string")
    return value


@dataclass(frozen=True)
class PairingRequest:
    """A pending pairing request created by the gateway."""
    id: str
    code: str
    created_at: str
    last_seen_at: str | None = None
    meta: dict[str, MetaValue] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.id, self.code)

    @property
    def display_name(self) -> str:
        meta = self.meta or {}
        for name_key in ("firstName", "username", "name"):
            if meta.get(name_key):
                return str(meta[name_key])
        return "Unknown"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "code": self.code, "createdAt": self.created_at}
        if self.last_seen_at is not None:
            data["lastSeenAt"] = self.last_seen_at
        if self.meta is not None:
            data["meta"] = dict(self.meta)
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Any, where: str = "request") -> PairingRequest:
        if not isinstance(data, dict):
            raise StoreMalformedError(f"{where}: expected an object")
        last_seen = data.get("lastSeenAt")
        if last_seen is not None and not isinstance(last_seen, str):
            raise StoreMalformedError(f"{where}: 'lastSeenAt' must be a string")
        meta = data.get("meta")
        if meta is not None and not isinstance(meta, dict):
            raise StoreMalformedError(f"{where}: 'meta' must be an object")
        return cls(
            id=_require_str(data, "id", where, allow_number=True),
            code=_require_str(data, "code", where),
            created_at=_require_str(data, "createdAt", where),
            last_seen_at=last_seen,
            meta=dict(meta) if meta is not None else None,
            extra={k: v for k, v in data.items() if k not in _REQUEST_KEYS},
        )


@dataclass(frozen=True)
class ApprovedEntry(PairingRequest):
    """A request that an administrator approved."""
    approved_at: str = ""

    @classmethod
    def from_request(cls, request: PairingRequest, approved_at: str) -> ApprovedEntry:
        return cls(
            id=request.id,
            code=request.code,
            created_at=request.created_at,
            last_seen_at=request.last_seen_at,
            meta=dict(request.meta) if request.meta is not None else None,
            extra=dict(request.extra),
            approved_at=approved_at,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["approvedAt"] = self.approved_at
        return data

    @classmethod
    def from_dict(cls, data: Any, where: str = "approved entry") -> ApprovedEntry:
        request = PairingRequest.from_dict(data, where)
        extra = dict(request.extra)
        approved_at = extra.pop("approvedAt", None)
        if not isinstance(approved_at, str) or not approved_at:
            raise StoreMalformedError(f"{where}: 'approvedAt' must be a non-empty string")
        return cls.from_request(replace(request, extra=extra), approved_at)


@dataclass(frozen=True)
class PairingStore:
    """Root of the pairing file: pending requests plus approved entries."""
    version: int = STORE_VERSION
    requests: tuple[PairingRequest, ...] = ()
    approved: tuple[ApprovedEntry, ...] = ()
    has_approved_key: bool = True
    extra: dict[str, Any] = field(default_factory=dict)

    def find_pending(self, id: str, code: str) -> PairingRequest | None:
        for request in self.requests:
            if request.id == id and request.code == code:
                return request
        return None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "version": self.version,
            "requests": [r.to_dict() for r in self.requests],
        }
        if self.has_approved_key or self.approved:
            data["approved"] = [a.to_dict() for a in self.approved]
        data.update(self.extra)
        return data

    @classmethod
    def empty(cls) -> PairingStore:
        return cls()

    @classmethod
    def from_dict(cls, data: Any) -> PairingStore:
        if not isinstance(data, dict):
            raise StoreMalformedError("pairing store: expected a JSON object")
        version = data.get("version", STORE_VERSION)
        if version != STORE_VERSION:
            raise StoreMalformedError(f"pairing store: unsupported version {version!r}")
        requests = data.get("requests", [])
        approved = data.get("approved", [])
        if not isinstance(requests, list):
            raise StoreMalformedError("pairing store: 'requests' must be a list")
        if not isinstance(approved, list):
            raise StoreMalformedError("pairing store: 'approved' must be a list")
        return cls(
            version=version,
            requests=tuple(
                PairingRequest.from_dict(r, f"requests[{i}]") for i, r in enumerate(requests)
            ),
            approved=tuple(
                ApprovedEntry.from_dict(a, f"approved[{i}]") for i, a in enumerate(approved)
            ),
            has_approved_key="approved" in data,
            extra={k: v for k, v in data.items() if k not in ("version", "requests", "approved")},
        )


@dataclass(frozen=True)
class AllowFromList:
    """Flattened, code-less identity allowlist."""
    version: int = STORE_VERSION
    allow_from: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"version": self.version, "allowFrom": list(self.allow_from)}
        data.update(self.extra)
        return data

    @classmethod
    def empty(cls) -> AllowFromList:
        return cls()

    @classmethod
    def from_dict(cls, data: Any) -> AllowFromList:
        if not isinstance(data, dict):
            raise StoreMalformedError("allowFrom file: expected a JSON object")
        version = data.get("version", STORE_VERSION)
        if version != STORE_VERSION:
            raise StoreMalformedError(f"allowFrom file: unsupported version {version!r}")
        entries = data.get("allowFrom", [])
        if not isinstance(entries, list):
            raise StoreMalformedError("allowFrom file: 'allowFrom' must be a list")
        allow_from = []
        for entry in entries:
            if isinstance(entry, bool) or not isinstance(entry, (str, int)):
                raise StoreMalformedError(f"allowFrom file: invalid entry {entry!r}")
            allow_from.append(str(entry))
        return cls(
            version=version,
            allow_from=tuple(allow_from),
            extra={k: v for k, v in data.items() if k not in ("version", "allowFrom")},
        )
