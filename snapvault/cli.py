import argparse
import os
import sys
from pathlib import Path
from typing import Callable

from loguru import logger

from snapvault.errors import NotInitialized, RepositoryExists, StorageError, UserError
from snapvault.impl.local import LocalFileSystem
from snapvault.impl.sql import create_sql_session_maker, create_sql_storage
from snapvault.log_config import configure_logging
from snapvault.repository import Repository

REPO_DIR = ".snapvault"
DB_NAME = "repo.db"

# Global options that consume the following argument as their value.
VALUE_OPTIONS = {"--work-dir", "--db-url"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapvault", description="Tiny local version control"
    )
    parser.add_argument(
        "--work-dir",
        default=os.environ.get("SNAPVAULT_WORK_DIR", "."),
        help="Working directory under version control (default: current directory)",
    )
    parser.add_argument(
        "--db-url",
        default=os.environ.get("SNAPVAULT_DB_URL"),
        help="SQLAlchemy URL of the repository database "
        f"(default: sqlite file in <work-dir>/{REPO_DIR})",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Log every repository mutation"
    )
    return parser


def split_argv(argv: list[str]) -> tuple[list[str], list[str]]:
    """
    Separate global options from the command and its operands.

    Operands are passed through verbatim, so a literal ``--`` reaches
    the checkout command untouched.
    """
    i = 0
    while i < len(argv):
        arg = argv[i]
        if not arg.startswith("-"):
            break
        i += 2 if arg in VALUE_OPTIONS else 1
    return argv[:i], argv[i:]


def echo(lines: list[str]) -> None:
    for line in lines:
        print(line)


def cmd_add(repo: Repository, path: str) -> None:
    repo.add(path)


def cmd_rm(repo: Repository, path: str) -> None:
    repo.remove(path)


def cmd_commit(repo: Repository, message: str) -> None:
    if repo.commit(message) is None:
        print("No changes added to the commit.")


def cmd_log(repo: Repository) -> None:
    print("\n\n".join(commit.render() for commit in repo.log()))


def cmd_global_log(repo: Repository) -> None:
    print("\n\n".join(repo.global_log()))


def cmd_status(repo: Repository) -> None:
    status = repo.status()
    echo(["=== Branches ==="])
    echo(
        [
            f"*{name}" if name == status.current_branch else name
            for name in status.branches
        ]
    )
    echo(["", "=== Staged Files ==="])
    echo(status.staged)
    echo(["", "=== Removed Files ==="])
    echo(status.removed)
    echo(["", "=== Modifications Not Staged For Commit ==="])
    echo([f"{path} ({change})" for path, change in status.modified])
    echo(["", "=== Untracked Files ==="])
    echo(status.untracked)
    print()


def cmd_find(repo: Repository, message: str) -> None:
    echo(repo.find(message))


def cmd_checkout(repo: Repository, *operands: str) -> None:
    if len(operands) == 1:
        repo.checkout_branch(operands[0])
    elif len(operands) == 2:
        repo.checkout_file(operands[1])
    else:
        repo.checkout_file_at(operands[0], operands[2])


def cmd_branch(repo: Repository, name: str) -> None:
    repo.new_branch(name)


def cmd_rm_branch(repo: Repository, name: str) -> None:
    repo.remove_branch(name)


def cmd_reset(repo: Repository, commit_id: str) -> None:
    repo.reset(commit_id)


def cmd_merge(repo: Repository, name: str) -> None:
    echo(repo.merge(name).report())


Command = Callable[..., None]

# name -> (handler, operand count, mutates state)
COMMANDS: dict[str, tuple[Command | None, int, bool]] = {
    "init": (None, 0, True),
    "add": (cmd_add, 1, True),
    "rm": (cmd_rm, 1, True),
    "commit": (cmd_commit, 1, True),
    "log": (cmd_log, 0, False),
    "global-log": (cmd_global_log, 0, False),
    "status": (cmd_status, 0, False),
    "find": (cmd_find, 1, False),
    "checkout": (cmd_checkout, -1, True),
    "branch": (cmd_branch, 1, True),
    "rm-branch": (cmd_rm_branch, 1, True),
    "reset": (cmd_reset, 1, True),
    "merge": (cmd_merge, 1, True),
}


def check_operands(command: str, operands: list[str]) -> str | None:
    """Return the usage error for this invocation, or None when valid."""
    if command == "commit" and (not operands or operands[0] == ""):
        return "Please enter a commit message."
    if command == "checkout":
        count = len(operands)
        if count == 1:
            return None
        if count == 2 and operands[0] == "--":
            return None
        if count == 3 and operands[1] == "--":
            return None
        return "Incorrect operands."
    if len(operands) != COMMANDS[command][1]:
        return "Incorrect operands."
    return None


def run(args: argparse.Namespace, command: str, operands: list[str]) -> None:
    work_dir = Path(args.work_dir).absolute()
    repo_dir = work_dir / REPO_DIR
    db_url = args.db_url or f"sqlite:///{repo_dir / DB_NAME}"
    fs = LocalFileSystem(work_dir)

    if command == "init":
        if args.db_url is None and repo_dir.exists():
            raise RepositoryExists()
        repo_dir.mkdir(parents=True, exist_ok=True)
        Repository.init(create_sql_storage(create_sql_session_maker(db_url)), fs)
        return

    if args.db_url is None and not (repo_dir / DB_NAME).exists():
        raise NotInitialized()

    repo = Repository.load(create_sql_storage(create_sql_session_maker(db_url)), fs)
    handler, _, mutates = COMMANDS[command]
    assert handler is not None
    handler(repo, *operands)
    if mutates:
        repo.save()


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    global_args, rest = split_argv(argv)
    args = build_parser().parse_args(global_args)
    configure_logging("DEBUG" if args.verbose else "WARNING")

    if not rest:
        print("Please enter a command.")
        return 0
    command, operands = rest[0], rest[1:]
    if command not in COMMANDS:
        print("No command with that name exists.")
        return 0
    usage_error = check_operands(command, operands)
    if usage_error:
        print(usage_error)
        return 0

    try:
        run(args, command, operands)
    except UserError as e:
        print(e.message)
    except StorageError as e:
        logger.error("{} failed: {}", command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
