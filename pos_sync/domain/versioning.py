from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Mapping, TypeVar

from pos_sync.domain.time_utils import parse_iso

T = TypeVar("T")


def _coerce_version(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


@dataclass(frozen=True)
class VersionStamp:
    """Conflict-resolution key of a syncable record.

    A record is newer when its version is strictly greater; when versions are
    equal or either is absent the strictly later ``updatedAt`` wins. A missing
    or unparseable timestamp never beats a present one.
    """

    version: int | None
    updated_at: datetime | None

    @classmethod
    def of(cls, record: Any) -> "VersionStamp":
        if isinstance(record, Mapping):
            return cls(_coerce_version(record.get("version")), parse_iso(record.get("updatedAt")))
        return cls(_coerce_version(getattr(record, "version", None)), parse_iso(getattr(record, "updated_at", None)))

    def compare(self, other: "VersionStamp") -> int:
        if self.version is not None and other.version is not None and self.version != other.version:
            return 1 if self.version > other.version else -1
        if self.updated_at is not None and other.updated_at is not None:
            if self.updated_at == other.updated_at:
                return 0
            return 1 if self.updated_at > other.updated_at else -1
        if self.updated_at is not None:
            return 1
        if other.updated_at is not None:
            return -1
        return 0


def compare_versions(a: Any, b: Any) -> int:
    """Returns 1 when ``a`` is newer, -1 when ``b`` is newer and 0 on a tie."""
    return VersionStamp.of(a).compare(VersionStamp.of(b))


def is_newer(candidate: Any, reference: Any) -> bool:
    return compare_versions(candidate, reference) > 0


def next_version(current: Any) -> int:
    return (_coerce_version(current) or 0) + 1


def bump(entity: T, updated_at: str, **changes: Any) -> T:
    """Applies ``changes`` to a frozen entity with the next version and a fresh timestamp."""
    return replace(entity, version=next_version(getattr(entity, "version", None)), updated_at=updated_at, **changes)
