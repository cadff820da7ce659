"""
Three-way merge of two branch heads.

The split point is searched along first parents only: second parents of
earlier merge commits are never followed. With merges in the history this
can pick an older common commit than the nearest true common ancestor,
which changes which side counts as "edited". That behavior is kept on
purpose because merge outcomes depend on it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from loguru import logger

from snapvault.base import ObjectStore
from snapvault.commit import Commit
from snapvault.worktree import WorkTree

CONFLICT_HEAD = b"<<<<<<< HEAD\n"
CONFLICT_SEPARATOR = b"=======\n"
CONFLICT_TAIL = b">>>>>>>\n"


class MergeOutcome(Enum):
    ANCESTOR = "ancestor"
    FAST_FORWARD = "fast-forward"
    MERGED = "merged"


@dataclass
class MergeResult:
    outcome: MergeOutcome
    commit: Commit | None = None
    conflicts: list[str] = field(default_factory=list)

    @property
    def conflicted(self) -> bool:
        return bool(self.conflicts)

    def report(self) -> list[str]:
        """Operator-facing lines describing the outcome."""
        if self.outcome is MergeOutcome.ANCESTOR:
            return ["Given branch is an ancestor of the current branch."]
        if self.outcome is MergeOutcome.FAST_FORWARD:
            return ["Current branch fast-forwarded."]
        if self.conflicted:
            return ["Encountered a merge conflict."]
        return []


@dataclass
class MergePlan:
    """
    Per-path decisions of a merge, computed before anything is mutated.

    Paths in ``checkout`` must be written to the working directory; paths
    in ``removals`` stop being tracked and are deleted from it.
    """

    additions: dict[str, str] = field(default_factory=dict)
    removals: set[str] = field(default_factory=set)
    checkout: dict[str, str] = field(default_factory=dict)
    conflicts: list[str] = field(default_factory=list)

    def take(self, path: str, blob_id: str) -> None:
        self.additions[path] = blob_id
        self.checkout[path] = blob_id

    def remove(self, path: str) -> None:
        self.removals.add(path)

    def conflict(self, path: str, blob_id: str) -> None:
        self.take(path, blob_id)
        self.conflicts.append(path)

    def touched(self) -> set[str]:
        return set(self.checkout) | self.removals


def merge_message(given_branch: str, current_branch: str) -> str:
    return f"Merged {given_branch} into {current_branch}."


def first_parent_chain(objects: ObjectStore, head: Commit) -> Iterator[Commit]:
    commit: Commit | None = head
    while commit is not None:
        yield commit
        commit = objects.get(commit.parent) if commit.parent else None


def find_split_point(objects: ObjectStore, current: Commit, given: Commit) -> Commit:
    """
    Most recent commit of given's first-parent chain that is also on
    current's first-parent chain.
    """
    current_history = {commit.id for commit in first_parent_chain(objects, current)}
    for commit in first_parent_chain(objects, given):
        if commit.id in current_history:
            return commit
    raise ValueError(f"Commits {current.id} and {given.id} share no history")


def synthesize_conflict(
    worktree: WorkTree, current_id: str | None, given_id: str | None
) -> str:
    """Store a blob holding both sides between conflict markers."""
    current = worktree.read_blob(current_id)
    given = worktree.read_blob(given_id)
    content = CONFLICT_HEAD + current + CONFLICT_SEPARATOR + given + CONFLICT_TAIL
    return worktree.store(worktree.hasher.digest(current, given), content)


def classify(
    worktree: WorkTree, split: Commit, current: Commit, given: Commit
) -> MergePlan:
    """
    Decide the fate of every path seen in any of the three commits.

    Paths whose merged state equals the current head are left out of the
    plan. Whenever both sides moved away from the split point the path
    conflicts, even if they converged on the same content.
    """
    plan = MergePlan()
    paths = set(split.blobs) | set(current.blobs) | set(given.blobs)

    for path in sorted(paths):
        split_id = split.blob_for(path)
        current_id = current.blob_for(path)
        given_id = given.blob_for(path)

        if split_id is not None:
            if current_id is not None and given_id is not None:
                if split_id == given_id:
                    continue
                if split_id == current_id:
                    plan.take(path, given_id)
                else:
                    plan.conflict(
                        path, synthesize_conflict(worktree, current_id, given_id)
                    )
            elif current_id is not None:
                if split_id == current_id:
                    plan.remove(path)
                else:
                    plan.conflict(path, synthesize_conflict(worktree, current_id, None))
            elif given_id is not None:
                if split_id != given_id:
                    plan.conflict(path, synthesize_conflict(worktree, None, given_id))
        elif current_id is not None and given_id is not None:
            if current_id != given_id:
                plan.conflict(
                    path, synthesize_conflict(worktree, current_id, given_id)
                )
        elif given_id is not None:
            plan.take(path, given_id)

    if plan.conflicts:
        logger.debug("Conflicting paths: {}", ", ".join(plan.conflicts))
    return plan
