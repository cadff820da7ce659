import copy
from dataclasses import dataclass, field
from typing import Any

from snapvault.base import (
    Blob,
    ContentStore,
    FileSystem,
    MessageLog,
    ObjectStore,
    RepositoryState,
    StateStore,
    Storage,
)
from snapvault.commit import Commit
from snapvault.repository import Repository


class MemoryContentStore(ContentStore):
    def __init__(self, data: dict[str, Blob] | None = None) -> None:
        self.data = data if data is not None else {}

    def put(self, blob_id: str, content: Blob) -> str:
        self.data.setdefault(blob_id, content)
        return blob_id

    def get(self, blob_id: str) -> Blob:
        return self.data[blob_id]

    def contains(self, blob_id: str) -> bool:
        return blob_id in self.data


class MemoryObjectStore(ObjectStore):
    def __init__(self, data: dict[str, Commit] | None = None) -> None:
        self.data = data if data is not None else {}

    def put(self, commit: Commit) -> str:
        self.data.setdefault(commit.id, commit)
        return commit.id

    def get(self, commit_id: str) -> Commit:
        return self.data[commit_id]

    def contains(self, commit_id: str) -> bool:
        return commit_id in self.data

    def ids_with_prefix(self, prefix: str) -> list[str]:
        return sorted(i for i in self.data if i.startswith(prefix))


class MemoryMessageLog(MessageLog):
    def __init__(self, data: list[str] | None = None) -> None:
        self.data = data if data is not None else []

    def append(self, entry: str) -> None:
        self.data.append(entry)

    def entries(self) -> list[str]:
        return list(self.data)


class MemoryStateStore(StateStore):
    def __init__(self) -> None:
        self.state: RepositoryState | None = None

    def load(self) -> RepositoryState | None:
        # Copies keep the saved state independent of the live repository.
        return copy.deepcopy(self.state)

    def save(self, state: RepositoryState) -> None:
        self.state = copy.deepcopy(state)


class MemoryFileSystem(FileSystem):
    """Flat working directory held in a dict, for tests and notebooks."""

    def __init__(self, files: dict[str, Blob] | None = None) -> None:
        self.files = files if files is not None else {}

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("MemoryFileSystem(...)")
        else:
            with p.group(4, "MemoryFileSystem(", ")"):
                p.breakable()
                p.text("files=")
                p.pretty(self.files)
                p.breakable()

    def read(self, path: str) -> Blob:
        return self.files[path]

    def write(self, path: str, content: Blob) -> None:
        self.files[path] = content

    def delete_if_plain_file(self, path: str) -> bool:
        return self.files.pop(path, None) is not None

    def exists(self, path: str) -> bool:
        return path in self.files

    def list_plain_files(self, directory: str = ".") -> list[str]:
        if directory not in (".", ""):
            prefix = directory.rstrip("/") + "/"
            names = [p[len(prefix) :] for p in self.files if p.startswith(prefix)]
        else:
            names = list(self.files)
        return sorted(name for name in names if "/" not in name)


@dataclass
class MemoryStorage(Storage):
    contents: MemoryContentStore = field(default_factory=MemoryContentStore)
    objects: MemoryObjectStore = field(default_factory=MemoryObjectStore)
    log: MemoryMessageLog = field(default_factory=MemoryMessageLog)
    state: MemoryStateStore = field(default_factory=MemoryStateStore)


def create_memory_repository(
    storage: MemoryStorage | None = None,
    fs: MemoryFileSystem | None = None,
    **kwargs: Any,
) -> Repository:
    """Load the repository held by storage, initializing it on first use."""
    storage = storage if storage is not None else MemoryStorage()
    fs = fs if fs is not None else MemoryFileSystem()
    if storage.state.load() is None:
        return Repository.init(storage, fs, **kwargs)
    return Repository.load(storage, fs, **kwargs)
