import json
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from snapvault.base import Blob, Hasher

UID_LENGTH = 40
TIMESTAMP_FORMAT = "%a %b %d %H:%M:%S %Y %z"

ROOT_MESSAGE = "initial commit"
ROOT_TIMESTAMP = datetime(1970, 1, 1, tzinfo=timezone.utc)

BlobMap = Mapping[str, str]


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT)


def serialize_blobs(blobs: BlobMap) -> str:
    return json.dumps(sorted(blobs.items()), separators=(",", ":"))


def blob_id(hasher: Hasher, content: Blob, path: str) -> str:
    """
    Identify the content of a tracked file.

    The path is part of the digest: equal bytes under different paths get
    different ids, so id equality means "same content at the same path".
    """
    return hasher.digest(content, path)


def commit_id(
    hasher: Hasher,
    message: str,
    timestamp: datetime,
    parent: str | None,
    blobs: BlobMap,
) -> str:
    return hasher.digest(
        message, format_timestamp(timestamp), parent or "", serialize_blobs(blobs)
    )


@dataclass(frozen=True, eq=False)
class Commit:
    """
    Immutable snapshot of all tracked paths.

    Parents are referenced by id only; commits live in an ObjectStore.
    """

    id: str
    message: str
    timestamp: datetime
    parent: str | None
    merge_parent: str | None
    blobs: BlobMap

    def __post_init__(self) -> None:
        frozen = MappingProxyType(dict(sorted(self.blobs.items())))
        object.__setattr__(self, "blobs", frozen)

    @classmethod
    def create(
        cls,
        hasher: Hasher,
        message: str,
        timestamp: datetime,
        parent: str | None,
        blobs: BlobMap,
        merge_parent: str | None = None,
    ) -> "Commit":
        return cls(
            id=commit_id(hasher, message, timestamp, parent, blobs),
            message=message,
            timestamp=timestamp,
            parent=parent,
            merge_parent=merge_parent,
            blobs=blobs,
        )

    @classmethod
    def root(cls, hasher: Hasher) -> "Commit":
        return cls.create(hasher, ROOT_MESSAGE, ROOT_TIMESTAMP, None, {})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Commit):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("Commit(...)")
        else:
            with p.group(4, "Commit(", ")"):
                p.breakable()
                p.text(f"id={self.id[:7]},")
                p.breakable()
                p.text(f"message={self.message!r},")
                p.breakable()
                p.text("blobs=")
                p.pretty(dict(self.blobs))
                p.breakable()

    @property
    def is_merge(self) -> bool:
        return self.merge_parent is not None

    def tracks(self, path: str) -> bool:
        return path in self.blobs

    def blob_for(self, path: str) -> str | None:
        return self.blobs.get(path)

    def render(self) -> str:
        """Text of this commit as it appears in logs."""
        lines = ["===", f"commit {self.id}"]
        if self.merge_parent is not None:
            assert self.parent is not None
            lines.append(f"Merge: {self.parent[:7]} {self.merge_parent[:7]}")
        lines.append(f"Date: {format_timestamp(self.timestamp)}")
        lines.append(self.message)
        return "\n".join(lines)
