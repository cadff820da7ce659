import pytest

from snapvault.commit import blob_id
from snapvault.errors import NothingToRemove, WorkingFileNotFound
from snapvault.repository import Repository
from tests.test_repo_common import commit_files, exists, write


def test_add_missing_file_fails(repo: Repository):
    with pytest.raises(WorkingFileNotFound):
        repo.add("ghost.txt")
    assert repo.stage.is_clean()


def test_add_nested_path_fails(repo: Repository):
    write(repo, "d/x.txt", "nested")
    with pytest.raises(WorkingFileNotFound):
        repo.add("d/x.txt")
    assert repo.stage.is_clean()
    assert repo.status().untracked == []


def test_add_stores_content_addressed_by_content_and_path(repo: Repository):
    write(repo, "a.txt", "same bytes")
    write(repo, "b.txt", "same bytes")
    repo.add("a.txt")
    repo.add("b.txt")

    a_id = repo.stage.additions["a.txt"]
    b_id = repo.stage.additions["b.txt"]
    assert a_id != b_id
    assert a_id == blob_id(repo.worktree.hasher, b"same bytes", "a.txt")
    assert repo.worktree.read_blob(a_id) == repo.worktree.read_blob(b_id)


def test_adding_committed_content_unstages(repo: Repository):
    commit_files(repo, "base", {"a.txt": "v1"})

    write(repo, "a.txt", "v2")
    repo.add("a.txt")
    assert "a.txt" in repo.stage.additions

    write(repo, "a.txt", "v1")
    repo.add("a.txt")
    repo.add("a.txt")
    assert repo.stage.additions == {}
    assert repo.stage.removals == set()


def test_add_cancels_staged_removal(repo: Repository):
    commit_files(repo, "base", {"a.txt": "v1"})
    repo.remove("a.txt")
    assert repo.stage.removals == {"a.txt"}

    write(repo, "a.txt", "v1")
    repo.add("a.txt")
    assert repo.stage.is_clean()


def test_add_changed_content_replaces_staged_removal(repo: Repository):
    commit_files(repo, "base", {"a.txt": "v1"})
    repo.remove("a.txt")
    write(repo, "a.txt", "v2")
    repo.add("a.txt")

    assert repo.stage.removals == set()
    assert list(repo.stage.additions) == ["a.txt"]


def test_remove_untracked_unstaged_fails(repo: Repository):
    write(repo, "loose.txt", "x")
    with pytest.raises(NothingToRemove):
        repo.remove("loose.txt")
    assert exists(repo, "loose.txt")


def test_remove_staged_new_file_only_unstages(repo: Repository):
    write(repo, "new.txt", "x")
    repo.add("new.txt")
    repo.remove("new.txt")

    assert repo.stage.is_clean()
    assert exists(repo, "new.txt"), "Untracked file must stay in the working tree"


def test_remove_tracked_file_stages_removal_and_deletes(repo: Repository):
    commit_files(repo, "base", {"a.txt": "v1"})
    write(repo, "a.txt", "edited")
    repo.add("a.txt")

    repo.remove("a.txt")
    assert repo.stage.additions == {}
    assert repo.stage.removals == {"a.txt"}
    assert not exists(repo, "a.txt")

    commit = repo.commit("drop a")
    assert commit is not None
    assert not commit.tracks("a.txt")


def test_remove_tracked_file_already_deleted(repo: Repository):
    commit_files(repo, "base", {"a.txt": "v1"})
    repo.worktree.fs.delete_if_plain_file("a.txt")

    repo.remove("a.txt")
    assert repo.stage.removals == {"a.txt"}
