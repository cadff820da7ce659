from typing import Iterable, Mapping

from loguru import logger

from snapvault.base import Blob, ContentStore, FileSystem, Hasher
from snapvault.commit import blob_id


class WorkTree:
    """
    Working directory bound to the content store it snapshots into.

    The working directory is flat: only files directly inside it can be
    tracked, and nested paths such as ``d/x.txt`` count as missing.
    """

    def __init__(self, fs: FileSystem, contents: ContentStore, hasher: Hasher) -> None:
        self.fs = fs
        self.contents = contents
        self.hasher = hasher

    def exists(self, path: str) -> bool:
        if "/" in path or "\\" in path:
            return False
        return self.fs.exists(path)

    def blob_id_of(self, path: str) -> str:
        """Blob id the working file at path would get, without storing it."""
        return blob_id(self.hasher, self.fs.read(path), path)

    def snapshot(self, path: str) -> str:
        """Persist the working file at path into the content store."""
        content = self.fs.read(path)
        new_id = blob_id(self.hasher, content, path)
        self.contents.put(new_id, content)
        logger.debug("Stored blob {} for {}", new_id[:7], path)
        return new_id

    def store(self, new_id: str, content: Blob) -> str:
        self.contents.put(new_id, content)
        return new_id

    def read_blob(self, blob_id: str | None) -> Blob:
        if blob_id is None:
            return b""
        return self.contents.get(blob_id)

    def restore(self, path: str, blob_id: str) -> None:
        """Overwrite the working file at path with a stored blob."""
        self.fs.write(path, self.contents.get(blob_id))
        logger.debug("Restored {} from blob {}", path, blob_id[:7])

    def delete(self, path: str) -> None:
        if self.fs.delete_if_plain_file(path):
            logger.debug("Deleted working file {}", path)

    def untracked_files(
        self, tracked: Iterable[str], staged: Iterable[str]
    ) -> list[str]:
        """Working files neither tracked by the head nor staged for addition."""
        known = set(tracked) | set(staged)
        return [name for name in self.fs.list_plain_files() if name not in known]

    def untracked_in_the_way(
        self,
        tracked: Iterable[str],
        staged: Iterable[str],
        touched: Iterable[str],
    ) -> list[str]:
        """Untracked files that writing or deleting the touched paths would clobber."""
        touched = set(touched)
        return [
            name for name in self.untracked_files(tracked, staged) if name in touched
        ]

    def materialize(self, blobs: Mapping[str, str], stale: Iterable[str] = ()) -> None:
        """
        Make the working directory reflect a snapshot: write every blob,
        then delete stale paths that the snapshot does not track.
        """
        for path, blob in blobs.items():
            self.restore(path, blob)
        for path in stale:
            if path not in blobs:
                self.delete(path)
