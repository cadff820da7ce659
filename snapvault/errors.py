class SnapVaultError(Exception):
    """Base exception for snapvault errors."""


class UserError(SnapVaultError):
    """
    Precondition of a user operation is not met.

    Reported to the operator; repository state is left unchanged.
    """

    default_message = ""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class NotInitialized(UserError):
    default_message = "Not in an initialized snapvault directory."


class RepositoryExists(UserError):
    default_message = (
        "A snapvault version-control system already exists in the current directory."
    )


class WorkingFileNotFound(UserError):
    default_message = "File does not exist."


class BranchNotFound(UserError):
    default_message = "No such branch exists."


class BranchExists(UserError):
    default_message = "A branch with that name already exists."


class CannotRemoveCurrentBranch(UserError):
    default_message = "Cannot remove the current branch."


class AlreadyOnBranch(UserError):
    default_message = "No need to checkout the current branch."


class CommitNotFound(UserError):
    default_message = "No commit with that id exists."


class MessageNotFound(UserError):
    default_message = "Found no commit with that message."


class FileNotInCommit(UserError):
    default_message = "File does not exist in that commit."


class NothingToRemove(UserError):
    default_message = "No reason to remove the file."


class EmptyCommitMessage(UserError):
    default_message = "Please enter a commit message."


class UntrackedFileInTheWay(UserError):
    default_message = (
        "There is an untracked file in the way; delete it or add it first."
    )

    def __init__(self, paths: list[str] | None = None) -> None:
        super().__init__()
        self.paths = paths or []


class UncommittedChanges(UserError):
    default_message = "You have uncommitted changes."


class SelfMerge(UserError):
    default_message = "Cannot merge a branch with itself."


class StorageError(SnapVaultError):
    """Underlying file system or database failed; the operation was aborted."""
