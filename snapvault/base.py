from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from snapvault.commit import Commit

Blob = bytes


class ContentStore:
    """
    Write-once storage of blob content keyed by blob id.

    Blob ids are computed by the caller (they depend on the tracked path,
    not only on the bytes), so the store never hashes anything itself.
    """

    def put(self, blob_id: str, content: Blob) -> str:
        """Store content under blob_id. Storing identical content twice is a no-op."""
        raise NotImplementedError()

    def get(self, blob_id: str) -> Blob:
        """Return the content of a blob. Raises KeyError for unknown ids."""
        raise NotImplementedError()

    def contains(self, blob_id: str) -> bool:
        raise NotImplementedError()


class ObjectStore:
    """
    Write-once storage of commits keyed by commit id.
    """

    def put(self, commit: "Commit") -> str:
        """Store a commit and return its id."""
        raise NotImplementedError()

    def get(self, commit_id: str) -> "Commit":
        """Return a commit by its full id. Raises KeyError for unknown ids."""
        raise NotImplementedError()

    def contains(self, commit_id: str) -> bool:
        raise NotImplementedError()

    def ids_with_prefix(self, prefix: str) -> list[str]:
        """List stored commit ids starting with prefix."""
        raise NotImplementedError()


class MessageLog:
    """
    Global append-only log with one rendered entry per commit ever created.
    """

    def append(self, entry: str) -> None:
        raise NotImplementedError()

    def entries(self) -> list[str]:
        """All entries in the order they were appended."""
        raise NotImplementedError()


@dataclass
class BranchState:
    head: str
    staged_additions: dict[str, str] = field(default_factory=dict)
    staged_removals: set[str] = field(default_factory=set)


@dataclass
class RepositoryState:
    """
    Logical shape of everything the repository persists besides blobs,
    commits and the message log.
    """

    current_branch: str
    branches: dict[str, BranchState] = field(default_factory=dict)
    message_index: dict[str, list[str]] = field(default_factory=dict)


class StateStore:
    def load(self) -> RepositoryState | None:
        """Return the saved state, or None when no repository was initialized."""
        raise NotImplementedError()

    def save(self, state: RepositoryState) -> None:
        """Replace the saved state."""
        raise NotImplementedError()


class FileSystem:
    """
    Working directory access. Paths are relative to the working directory.
    """

    def read(self, path: str) -> Blob:
        raise NotImplementedError()

    def write(self, path: str, content: Blob) -> None:
        raise NotImplementedError()

    def delete_if_plain_file(self, path: str) -> bool:
        """Delete path only if it is a regular file. Returns True if deleted."""
        raise NotImplementedError()

    def exists(self, path: str) -> bool:
        """Check whether path is an existing regular file."""
        raise NotImplementedError()

    def list_plain_files(self, directory: str = ".") -> list[str]:
        """Sorted names of the regular files directly inside directory."""
        raise NotImplementedError()


class Hasher:
    """Content-addressing primitive used for both blob and commit ids."""

    def digest(self, *parts: bytes | str) -> str:
        raise NotImplementedError()


@dataclass
class Storage:
    """Everything a repository persists, grouped by concern."""

    contents: ContentStore
    objects: ObjectStore
    log: MessageLog
    state: StateStore
