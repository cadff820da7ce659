from datetime import datetime
from typing import Any

from loguru import logger

from snapvault.commit import Commit
from snapvault.errors import NothingToRemove, WorkingFileNotFound
from snapvault.worktree import WorkTree


class Stage:
    """
    Pending changes layered over the commit a branch currently points at.

    Additions map a path to the blob it will have in the next commit;
    removals are paths the next commit will stop tracking. A path is never
    in both.
    """

    def __init__(
        self,
        base: Commit,
        worktree: WorkTree,
        additions: dict[str, str] | None = None,
        removals: set[str] | None = None,
    ) -> None:
        self.base = base
        self.worktree = worktree
        self.additions: dict[str, str] = dict(additions or {})
        self.removals: set[str] = set(removals or ())

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("Stage(...)")
        else:
            with p.group(4, "Stage(", ")"):
                p.breakable()
                p.text("base=")
                p.pretty(self.base)
                p.text(",")
                p.breakable()
                p.text("additions=")
                p.pretty(self.additions)
                p.text(",")
                p.breakable()
                p.text("removals=")
                p.pretty(sorted(self.removals))
                p.breakable()

    def add(self, path: str) -> None:
        if not self.worktree.exists(path):
            raise WorkingFileNotFound()

        if self.base.blob_for(path) == self.worktree.blob_id_of(path):
            # Unchanged since the base commit: nothing left to stage.
            self.additions.pop(path, None)
            self.removals.discard(path)
            logger.debug("Unstaged unchanged file {}", path)
            return

        self.stage(path, self.worktree.snapshot(path))

    def remove(self, path: str) -> None:
        tracked = self.base.tracks(path)
        if path not in self.additions and not tracked:
            raise NothingToRemove()

        self.additions.pop(path, None)
        if tracked:
            self.mark_removed(path)
            self.worktree.delete(path)

    def stage(self, path: str, blob_id: str) -> None:
        self.removals.discard(path)
        self.additions[path] = blob_id
        logger.debug("Staged {} as {}", path, blob_id[:7])

    def mark_removed(self, path: str) -> None:
        self.additions.pop(path, None)
        self.removals.add(path)
        logger.debug("Staged removal of {}", path)

    def is_clean(self) -> bool:
        return not self.additions and not self.removals

    def blobs(self) -> dict[str, str]:
        """Snapshot the next commit would record."""
        result = {
            path: blob
            for path, blob in self.base.blobs.items()
            if path not in self.removals
        }
        result.update(self.additions)
        return result

    def freeze(
        self, message: str, timestamp: datetime, merge_parent: str | None = None
    ) -> Commit:
        """Create the commit that applies this stage on top of its base."""
        return Commit.create(
            self.worktree.hasher,
            message,
            timestamp,
            self.base.id,
            self.blobs(),
            merge_parent=merge_parent,
        )
