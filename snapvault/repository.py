from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, Mapping

from loguru import logger

from snapvault.base import (
    BranchState,
    FileSystem,
    Hasher,
    RepositoryState,
    Storage,
)
from snapvault.commit import UID_LENGTH, Commit
from snapvault.errors import (
    AlreadyOnBranch,
    BranchExists,
    BranchNotFound,
    CannotRemoveCurrentBranch,
    CommitNotFound,
    EmptyCommitMessage,
    FileNotInCommit,
    MessageNotFound,
    NotInitialized,
    RepositoryExists,
    SelfMerge,
    StorageError,
    UncommittedChanges,
    UntrackedFileInTheWay,
)
from snapvault.impl.local import Sha1Hasher
from snapvault.merge import (
    MergeOutcome,
    MergeResult,
    classify,
    find_split_point,
    first_parent_chain,
    merge_message,
)
from snapvault.stage import Stage
from snapvault.worktree import WorkTree

DEFAULT_BRANCH = "master"
MIN_ABBREV_LENGTH = 4

Clock = Callable[[], datetime]


def local_now() -> datetime:
    return datetime.now().astimezone()


class Branch:
    """Named pointer to a commit, owning the stage built on top of it."""

    def __init__(self, name: str, head: Commit, stage: Stage) -> None:
        self.name = name
        self.head = head
        self.stage = stage

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("Branch(...)")
        else:
            with p.group(4, "Branch(", ")"):
                p.breakable()
                p.text(f"name='{self.name}',")
                p.breakable()
                p.text(f"head={self.head.id[:7]},")
                p.breakable()
                p.text("stage=")
                p.pretty(self.stage)
                p.breakable()

    def move_to(self, commit: Commit) -> None:
        """Point at commit and start over with an empty stage."""
        self.head = commit
        self.stage = Stage(commit, self.stage.worktree)
        logger.debug("Branch {} now at {}", self.name, commit.id[:7])


@dataclass
class Status:
    current_branch: str
    branches: list[str]
    staged: list[str]
    removed: list[str]
    modified: list[tuple[str, str]] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)


class Repository:
    """
    Branch table, current branch and message index over shared storage.

    A repository is loaded from storage, mutated by user operations and
    saved back explicitly; nothing is persisted implicitly except the
    write-once blobs, commits and log entries.
    """

    def __init__(
        self,
        storage: Storage,
        worktree: WorkTree,
        state: RepositoryState,
        clock: Clock = local_now,
    ) -> None:
        self.storage = storage
        self.worktree = worktree
        self.clock = clock

        self.branches: dict[str, Branch] = {}
        for name, branch_state in state.branches.items():
            head = storage.objects.get(branch_state.head)
            stage = Stage(
                head,
                worktree,
                branch_state.staged_additions,
                branch_state.staged_removals,
            )
            self.branches[name] = Branch(name, head, stage)

        if state.current_branch not in self.branches:
            raise StorageError(
                f"Saved state names missing current branch '{state.current_branch}'"
            )
        self.current_branch = state.current_branch
        self.message_index: dict[str, list[str]] = {
            message: list(ids) for message, ids in state.message_index.items()
        }

    @classmethod
    def init(
        cls,
        storage: Storage,
        fs: FileSystem,
        hasher: Hasher | None = None,
        clock: Clock = local_now,
    ) -> "Repository":
        if storage.state.load() is not None:
            raise RepositoryExists()

        hasher = hasher or Sha1Hasher()
        root = Commit.root(hasher)
        state = RepositoryState(
            current_branch=DEFAULT_BRANCH,
            branches={DEFAULT_BRANCH: BranchState(head=root.id)},
        )
        storage.objects.put(root)
        storage.log.append(root.render())
        repo = cls(storage, WorkTree(fs, storage.contents, hasher), state, clock)
        repo._index(root)
        repo.save()
        logger.info("Initialized repository with root commit {}", root.id[:7])
        return repo

    @classmethod
    def load(
        cls,
        storage: Storage,
        fs: FileSystem,
        hasher: Hasher | None = None,
        clock: Clock = local_now,
    ) -> "Repository":
        state = storage.state.load()
        if state is None:
            raise NotInitialized()
        worktree = WorkTree(fs, storage.contents, hasher or Sha1Hasher())
        return cls(storage, worktree, state, clock)

    def save(self) -> None:
        self.storage.state.save(self.to_state())

    def to_state(self) -> RepositoryState:
        return RepositoryState(
            current_branch=self.current_branch,
            branches={
                name: BranchState(
                    head=branch.head.id,
                    staged_additions=dict(branch.stage.additions),
                    staged_removals=set(branch.stage.removals),
                )
                for name, branch in self.branches.items()
            },
            message_index={
                message: list(ids) for message, ids in self.message_index.items()
            },
        )

    def _repr_pretty_(self, p: Any, cycle: bool) -> None:
        if cycle:
            p.text("Repository(...)")
        else:
            with p.group(4, "Repository(", ")"):
                p.breakable()
                p.text(f"current_branch='{self.current_branch}',")
                p.breakable()
                p.text("branches=")
                p.pretty(self.branches)
                p.breakable()

    @property
    def branch(self) -> Branch:
        return self.branches[self.current_branch]

    @property
    def head(self) -> Commit:
        return self.branch.head

    @property
    def stage(self) -> Stage:
        return self.branch.stage

    # Staging and committing

    def add(self, path: str) -> None:
        self.stage.add(path)

    def remove(self, path: str) -> None:
        self.stage.remove(path)

    def commit(self, message: str) -> Commit | None:
        """
        Record the current stage as a new commit on the current branch.

        Returns None, leaving everything untouched, when nothing is staged.
        """
        if not message:
            raise EmptyCommitMessage()
        if self.stage.is_clean():
            logger.info("No changes added to the commit")
            return None

        commit = self.stage.freeze(message, self.clock())
        self._store(commit)
        self._index(commit)
        self.branch.move_to(commit)
        logger.info("Committed {} on {}", commit.id[:7], self.current_branch)
        return commit

    def _store(self, commit: Commit) -> None:
        """Write commit to the object store and the message log."""
        self.storage.objects.put(commit)
        self.storage.log.append(commit.render())

    def _index(self, commit: Commit) -> None:
        ids = self.message_index.setdefault(commit.message, [])
        if commit.id not in ids:
            ids.append(commit.id)

    # Lookup

    def resolve_commit(self, commit_id: str) -> Commit:
        """
        Find a commit by its full id or by an unambiguous abbreviation of
        at least MIN_ABBREV_LENGTH characters.
        """
        objects = self.storage.objects
        if len(commit_id) >= UID_LENGTH:
            if objects.contains(commit_id):
                return objects.get(commit_id)
            raise CommitNotFound()
        if len(commit_id) < MIN_ABBREV_LENGTH:
            raise CommitNotFound()

        matches = objects.ids_with_prefix(commit_id)
        if len(matches) > 1:
            raise CommitNotFound(f"Commit id {commit_id} is ambiguous.")
        if not matches:
            raise CommitNotFound()
        return objects.get(matches[0])

    def find(self, message: str) -> list[str]:
        ids = self.message_index.get(message)
        if not ids:
            raise MessageNotFound()
        return list(ids)

    def log(self) -> Iterator[Commit]:
        """History of the current branch along first parents, newest first."""
        return first_parent_chain(self.storage.objects, self.head)

    def global_log(self) -> list[str]:
        return self.storage.log.entries()

    def status(self) -> Status:
        stage = self.stage
        modified: list[tuple[str, str]] = []
        expected: dict[str, str] = {
            path: blob
            for path, blob in self.head.blobs.items()
            if path not in stage.removals
        }
        expected.update(stage.additions)
        for path in sorted(expected):
            if not self.worktree.exists(path):
                modified.append((path, "deleted"))
            elif self.worktree.blob_id_of(path) != expected[path]:
                modified.append((path, "modified"))

        return Status(
            current_branch=self.current_branch,
            branches=sorted(self.branches),
            staged=sorted(stage.additions),
            removed=sorted(stage.removals),
            modified=modified,
            untracked=self.worktree.untracked_files(self.head.blobs, stage.additions),
        )

    # Branches and checkout

    def new_branch(self, name: str) -> Branch:
        if name in self.branches:
            raise BranchExists()
        branch = Branch(name, self.head, Stage(self.head, self.worktree))
        self.branches[name] = branch
        logger.info("Created branch {} at {}", name, self.head.id[:7])
        return branch

    def remove_branch(self, name: str) -> None:
        if name not in self.branches:
            raise BranchNotFound("A branch with that name does not exist.")
        if name == self.current_branch:
            raise CannotRemoveCurrentBranch()
        del self.branches[name]
        logger.info("Removed branch {}", name)

    def checkout_branch(self, name: str) -> None:
        if name not in self.branches:
            raise BranchNotFound()
        if name == self.current_branch:
            raise AlreadyOnBranch()

        target = self.branches[name]
        self._switch_snapshot(target.head.blobs)

        self.branch.move_to(self.head)
        self.current_branch = name
        target.move_to(target.head)
        logger.info("Switched to branch {}", name)

    def checkout_file(self, path: str) -> None:
        self._checkout_file_from(self.head, path)

    def checkout_file_at(self, commit_id: str, path: str) -> None:
        self._checkout_file_from(self.resolve_commit(commit_id), path)

    def _checkout_file_from(self, commit: Commit, path: str) -> None:
        blob = commit.blob_for(path)
        if blob is None:
            raise FileNotInCommit()
        self.worktree.restore(path, blob)

    def reset(self, commit_id: str) -> None:
        target = self.resolve_commit(commit_id)
        self._switch_snapshot(target.blobs)
        self.branch.move_to(target)
        logger.info("Reset {} to {}", self.current_branch, target.id[:7])

    def _check_untracked(self, touched: Iterable[str]) -> None:
        in_the_way = self.worktree.untracked_in_the_way(
            self.head.blobs, self.stage.additions, touched
        )
        if in_the_way:
            raise UntrackedFileInTheWay(in_the_way)

    def _switch_snapshot(self, blobs: Mapping[str, str]) -> None:
        """Replace the head's files in the working directory with blobs."""
        self._check_untracked(blobs)
        self.worktree.materialize(blobs, stale=self.head.blobs)

    # Merge

    def merge(self, name: str) -> MergeResult:
        if not self.stage.is_clean():
            raise UncommittedChanges()
        if name not in self.branches:
            raise BranchNotFound("A branch with that name does not exist.")
        if name == self.current_branch:
            raise SelfMerge()

        current = self.head
        given = self.branches[name].head
        split = find_split_point(self.storage.objects, current, given)

        if split.id == given.id:
            logger.info("Branch {} is an ancestor of {}", name, self.current_branch)
            return MergeResult(MergeOutcome.ANCESTOR)

        if split.id == current.id:
            self._switch_snapshot(given.blobs)
            self.branch.move_to(given)
            logger.info("Fast-forwarded {} to {}", self.current_branch, given.id[:7])
            return MergeResult(MergeOutcome.FAST_FORWARD, commit=given)

        plan = classify(self.worktree, split, current, given)
        self._check_untracked(plan.touched())

        stage = Stage(current, self.worktree)
        for path, blob in plan.additions.items():
            stage.stage(path, blob)
        for path in plan.removals:
            stage.mark_removed(path)

        commit = stage.freeze(
            merge_message(name, self.current_branch),
            self.clock(),
            merge_parent=given.id,
        )
        # Nothing outside storage changes until the commit is written.
        self._store(commit)
        self.worktree.materialize(plan.checkout, stale=plan.removals)
        self._index(commit)
        self.branch.move_to(commit)

        if plan.conflicts:
            logger.warning(
                "Merge of {} produced conflicts in {}", name, ", ".join(plan.conflicts)
            )
        logger.info("Merged {} into {} as {}", name, self.current_branch, commit.id[:7])
        return MergeResult(MergeOutcome.MERGED, commit=commit, conflicts=plan.conflicts)
