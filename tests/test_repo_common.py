from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from snapvault.commit import ROOT_MESSAGE, UID_LENGTH
from snapvault.errors import MessageNotFound, StorageError
from snapvault.impl.local import LocalFileSystem
from snapvault.impl.memory import (
    MemoryFileSystem,
    MemoryMessageLog,
    MemoryStorage,
    create_memory_repository,
)
from snapvault.impl.sql import Base, SqlMessageLog, create_sql_repository
from snapvault.merge import merge_message
from snapvault.repository import Repository


class Ticker:
    """Clock advancing one second per call, so every commit gets its own time."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class RepoProvider:
    def create(self, path: Path) -> Repository:
        raise NotImplementedError()

    def cleanup(self, repo: Repository) -> None:
        pass


class MemoryRepoProvider(RepoProvider):
    def __init__(self):
        self.storage = MemoryStorage()
        self.fs = MemoryFileSystem()

    def create(self, path: Path) -> Repository:
        # Memory repo ignores path, but shares storage and files between instances
        return create_memory_repository(self.storage, self.fs, clock=Ticker())


class SqlRepoProvider(RepoProvider):
    def __init__(self):
        self.engine = None

    def create(self, path: Path) -> Repository:
        db_url = f"sqlite:///{path / 'repo.db'}"

        # Fresh engine on every call simulates an application restart.
        if self.engine:
            self.engine.dispose()

        self.engine = create_engine(db_url)
        Base.metadata.create_all(self.engine)
        Session = sessionmaker(bind=self.engine)
        return create_sql_repository(Session, path / "work", clock=Ticker())

    def cleanup(self, repo: Repository) -> None:
        if self.engine:
            self.engine.dispose()


PROVIDERS = [
    MemoryRepoProvider,
    SqlRepoProvider,
]
PROVIDER_IDS = ["memory", "sql"]


def write(repo: Repository, path: str, content: str) -> None:
    repo.worktree.fs.write(path, content.encode())


def read(repo: Repository, path: str) -> str:
    return repo.worktree.fs.read(path).decode()


def exists(repo: Repository, path: str) -> bool:
    return repo.worktree.fs.exists(path)


def commit_files(repo: Repository, message: str, files: dict[str, str | None]):
    """Write (or rm, for None) every file, stage it and commit."""
    for path, content in files.items():
        if content is None:
            repo.remove(path)
        else:
            write(repo, path, content)
            repo.add(path)
    commit = repo.commit(message)
    assert commit is not None
    return commit


@pytest.mark.parametrize("provider_cls", PROVIDERS, ids=PROVIDER_IDS)
def test_repo_lifecycle(tmp_path: Path, provider_cls: type[RepoProvider]):
    repo_provider = provider_cls()
    repo = repo_provider.create(tmp_path)
    try:
        # Test 1: Fresh repository sits on the root commit
        root = repo.head
        assert repo.current_branch == "master"
        assert root.message == ROOT_MESSAGE
        assert root.parent is None
        assert dict(root.blobs) == {}
        assert len(root.id) == UID_LENGTH

        # Test 2: Stage a file
        write(repo, "app.txt", "version 1")
        repo.add("app.txt")
        assert repo.stage.is_clean() is False, "Stage should be dirty after add"

        # Test 3: Commit
        first = repo.commit("first")
        assert first is not None
        assert repo.stage.is_clean() is True, "Stage should be clean after commit"
        assert first.parent == root.id
        assert repo.head == first
        assert repo.worktree.read_blob(first.blob_for("app.txt")) == b"version 1"

        # Test 4: Modify and commit again
        write(repo, "app.txt", "version 2")
        repo.add("app.txt")
        second = repo.commit("second")
        assert second is not None
        assert repo.worktree.read_blob(second.blob_for("app.txt")) == b"version 2"

        assert [c.message for c in repo.log()] == ["second", "first", ROOT_MESSAGE]
    finally:
        repo_provider.cleanup(repo)


@pytest.mark.parametrize("provider_cls", PROVIDERS, ids=PROVIDER_IDS)
def test_repo_persistence(tmp_path: Path, provider_cls: type[RepoProvider]):
    repo_provider = provider_cls()

    repo1 = repo_provider.create(tmp_path)
    commit_files(repo1, "db config", {"db.txt": "localhost"})
    repo1.new_branch("dev")
    write(repo1, "pending.txt", "staged only")
    repo1.add("pending.txt")
    repo1.remove("db.txt")
    repo1.save()
    saved = repo1.to_state()
    repo_provider.cleanup(repo1)

    repo2 = repo_provider.create(tmp_path)
    try:
        assert repo2.to_state() == saved
        assert repo2.current_branch == "master"
        assert sorted(repo2.branches) == ["dev", "master"]
        assert repo2.head == repo1.head
        assert list(repo2.stage.additions) == ["pending.txt"]
        assert repo2.stage.removals == {"db.txt"}
        assert repo2.find("db config") == [repo1.head.id]
    finally:
        repo_provider.cleanup(repo2)


def test_commit_without_changes_is_reported_noop(repo: Repository):
    head = repo.head
    assert repo.commit("nothing") is None
    assert repo.head == head
    with pytest.raises(MessageNotFound):
        repo.find("nothing")


def test_commit_applies_stage_on_parent(repo: Repository):
    base = commit_files(repo, "base", {"a.txt": "a", "b.txt": "b", "c.txt": "c"})
    child = commit_files(repo, "child", {"a.txt": "a2", "b.txt": None, "d.txt": "d"})

    expected = dict(base.blobs)
    del expected["b.txt"]
    expected["a.txt"] = child.blob_for("a.txt")
    expected["d.txt"] = child.blob_for("d.txt")
    assert dict(child.blobs) == expected
    assert expected["a.txt"] != base.blob_for("a.txt")
    assert not exists(repo, "b.txt")


def test_find_returns_commits_in_creation_order(repo: Repository):
    first = commit_files(repo, "same", {"a.txt": "1"})
    commit_files(repo, "other", {"a.txt": "2"})
    second = commit_files(repo, "same", {"a.txt": "3"})

    assert repo.find("same") == [first.id, second.id]
    with pytest.raises(MessageNotFound):
        repo.find("missing")


def test_global_log_records_every_commit(repo: Repository):
    commit_files(repo, "on master", {"a.txt": "1"})
    repo.new_branch("side")
    repo.checkout_branch("side")
    side = commit_files(repo, "on side", {"b.txt": "2"})

    entries = repo.global_log()
    assert len(entries) == 3
    assert entries[0].endswith(ROOT_MESSAGE)
    assert entries[-1] == side.render()
    assert entries[-1].startswith(f"===\ncommit {side.id}\nDate: ")


def test_status_reports_every_section(repo: Repository):
    commit_files(repo, "base", {"kept.txt": "k", "gone.txt": "g", "edit.txt": "e"})
    repo.new_branch("other")

    write(repo, "new.txt", "n")
    repo.add("new.txt")
    repo.remove("gone.txt")
    write(repo, "edit.txt", "changed")
    repo.worktree.fs.delete_if_plain_file("kept.txt")
    write(repo, "stray.txt", "s")

    status = repo.status()
    assert status.current_branch == "master"
    assert status.branches == ["master", "other"]
    assert status.staged == ["new.txt"]
    assert status.removed == ["gone.txt"]
    assert status.modified == [("edit.txt", "modified"), ("kept.txt", "deleted")]
    assert status.untracked == ["stray.txt"]


class FlakyMessageLog(MemoryMessageLog):
    """Message log that fails every append while ``broken`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.broken = False

    def append(self, entry: str) -> None:
        if self.broken:
            raise StorageError("message log unavailable")
        super().append(entry)


def create_flaky_repository() -> tuple[Repository, FlakyMessageLog]:
    log = FlakyMessageLog()
    repo = create_memory_repository(
        MemoryStorage(log=log), MemoryFileSystem(), clock=Ticker()
    )
    return repo, log


def test_failed_commit_leaves_repository_unchanged():
    repo, log = create_flaky_repository()
    write(repo, "a.txt", "1")
    repo.add("a.txt")
    head = repo.head
    state = repo.to_state()

    log.broken = True
    with pytest.raises(StorageError):
        repo.commit("doomed")

    assert repo.head == head
    assert repo.to_state() == state
    with pytest.raises(MessageNotFound):
        repo.find("doomed")

    log.broken = False
    commit = repo.commit("doomed")
    assert commit is not None
    assert repo.find("doomed") == [commit.id]


def test_failed_merge_leaves_repository_unchanged():
    repo, log = create_flaky_repository()
    commit_files(repo, "base", {"a.txt": "0"})
    repo.new_branch("other")
    repo.checkout_branch("other")
    given = commit_files(repo, "theirs", {"b.txt": "1"})
    repo.checkout_branch("master")
    head = commit_files(repo, "mine", {"a.txt": "1"})
    state = repo.to_state()
    entries = repo.global_log()

    log.broken = True
    with pytest.raises(StorageError):
        repo.merge("other")

    assert repo.head == head
    assert repo.stage.is_clean()
    assert repo.to_state() == state
    assert repo.global_log() == entries
    assert not exists(repo, "b.txt")
    assert read(repo, "a.txt") == "1"
    with pytest.raises(MessageNotFound):
        repo.find(merge_message("other", "master"))

    log.broken = False
    merged = repo.merge("other").commit
    assert merged is not None
    assert merged.merge_parent == given.id
    assert read(repo, "b.txt") == "1"


def test_corrupt_state_is_a_storage_error():
    storage = MemoryStorage()
    repo = create_memory_repository(storage, MemoryFileSystem())
    state = repo.to_state()
    state.current_branch = "gone"

    with pytest.raises(StorageError):
        Repository(storage, repo.worktree, state)


def test_local_file_system_reports_os_errors(tmp_path: Path):
    fs = LocalFileSystem(tmp_path)
    (tmp_path / "plain").write_text("x")

    with pytest.raises(StorageError):
        fs.read("missing.txt")
    with pytest.raises(StorageError):
        fs.write("plain/nested.txt", b"y")
    assert (tmp_path / "plain").read_text() == "x"


def test_sql_store_reports_database_errors():
    engine = create_engine("sqlite://")
    log = SqlMessageLog(sessionmaker(bind=engine))
    try:
        # Tables were never created.
        with pytest.raises(StorageError):
            log.entries()
        with pytest.raises(StorageError):
            log.append("entry")
    finally:
        engine.dispose()
