from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from loguru import logger
from sqlalchemy import ForeignKey, LargeBinary, create_engine, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

from snapvault.base import (
    Blob,
    BranchState,
    ContentStore,
    MessageLog,
    ObjectStore,
    RepositoryState,
    StateStore,
    Storage,
)
from snapvault.commit import Commit, format_timestamp, parse_timestamp
from snapvault.errors import StorageError
from snapvault.impl.local import LocalFileSystem
from snapvault.repository import Repository

SessionMaker = Callable[[], Session]


class Base(DeclarativeBase):
    pass


class BlobModel(Base):
    __tablename__ = "blobs"
    id: Mapped[str] = mapped_column(primary_key=True)
    content: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)


class CommitModel(Base):
    __tablename__ = "commits"
    id: Mapped[str] = mapped_column(primary_key=True)
    message: Mapped[str]
    timestamp: Mapped[str]
    parent_id: Mapped[str | None] = mapped_column(
        ForeignKey("commits.id"), nullable=True
    )
    merge_parent_id: Mapped[str | None] = mapped_column(
        ForeignKey("commits.id"), nullable=True
    )

    items: Mapped[list["CommitItemModel"]] = relationship(
        "CommitItemModel", lazy="selectin"
    )


class CommitItemModel(Base):
    __tablename__ = "commit_items"
    commit_id: Mapped[str] = mapped_column(ForeignKey("commits.id"), primary_key=True)
    path: Mapped[str] = mapped_column(primary_key=True)
    blob_id: Mapped[str] = mapped_column(ForeignKey("blobs.id"))


class LogEntryModel(Base):
    __tablename__ = "log_entries"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    text: Mapped[str]


class BranchModel(Base):
    __tablename__ = "branches"
    name: Mapped[str] = mapped_column(primary_key=True)
    head_id: Mapped[str] = mapped_column(ForeignKey("commits.id"))
    is_current: Mapped[bool] = mapped_column(default=False)


class StagedItemModel(Base):
    """Pending change of a branch; a null blob marks a staged removal."""

    __tablename__ = "staged_items"
    branch_name: Mapped[str] = mapped_column(
        ForeignKey("branches.name"), primary_key=True
    )
    path: Mapped[str] = mapped_column(primary_key=True)
    blob_id: Mapped[str | None] = mapped_column(ForeignKey("blobs.id"), nullable=True)


class MessageIndexModel(Base):
    __tablename__ = "message_index"
    message: Mapped[str] = mapped_column(primary_key=True)
    commit_id: Mapped[str] = mapped_column(ForeignKey("commits.id"), primary_key=True)
    position: Mapped[int]


class _SqlStore:
    def __init__(self, session_maker: SessionMaker) -> None:
        self.session_maker = session_maker

    @contextmanager
    def session(self) -> Iterator[Session]:
        try:
            with self.session_maker() as session:
                yield session
        except SQLAlchemyError as e:
            raise StorageError(f"Database failure: {e}") from e


class SqlContentStore(_SqlStore, ContentStore):
    def put(self, blob_id: str, content: Blob) -> str:
        with self.session() as session:
            if session.get(BlobModel, blob_id) is None:
                session.add(BlobModel(id=blob_id, content=content))
                session.commit()
        return blob_id

    def get(self, blob_id: str) -> Blob:
        with self.session() as session:
            blob = session.get(BlobModel, blob_id)
            if blob is None:
                raise KeyError(blob_id)
            return blob.content

    def contains(self, blob_id: str) -> bool:
        with self.session() as session:
            return session.get(BlobModel, blob_id) is not None


class SqlObjectStore(_SqlStore, ObjectStore):
    def __init__(self, session_maker: SessionMaker) -> None:
        super().__init__(session_maker)
        # Commits never change once written.
        self.cache: dict[str, Commit] = {}

    def put(self, commit: Commit) -> str:
        with self.session() as session:
            if session.get(CommitModel, commit.id) is None:
                session.add(
                    CommitModel(
                        id=commit.id,
                        message=commit.message,
                        timestamp=format_timestamp(commit.timestamp),
                        parent_id=commit.parent,
                        merge_parent_id=commit.merge_parent,
                        items=[
                            CommitItemModel(path=path, blob_id=blob)
                            for path, blob in commit.blobs.items()
                        ],
                    )
                )
                session.commit()
                logger.debug("Stored commit {}", commit.id[:7])
        self.cache[commit.id] = commit
        return commit.id

    def get(self, commit_id: str) -> Commit:
        if commit_id in self.cache:
            return self.cache[commit_id]

        with self.session() as session:
            model = session.get(CommitModel, commit_id)
            if model is None:
                raise KeyError(commit_id)
            commit = Commit(
                id=model.id,
                message=model.message,
                timestamp=parse_timestamp(model.timestamp),
                parent=model.parent_id,
                merge_parent=model.merge_parent_id,
                blobs={item.path: item.blob_id for item in model.items},
            )
        self.cache[commit_id] = commit
        return commit

    def contains(self, commit_id: str) -> bool:
        if commit_id in self.cache:
            return True
        with self.session() as session:
            return session.get(CommitModel, commit_id) is not None

    def ids_with_prefix(self, prefix: str) -> list[str]:
        stmt = (
            select(CommitModel.id)
            .where(CommitModel.id.startswith(prefix, autoescape=True))
            .order_by(CommitModel.id)
        )
        with self.session() as session:
            return list(session.execute(stmt).scalars().all())


class SqlMessageLog(_SqlStore, MessageLog):
    def append(self, entry: str) -> None:
        with self.session() as session:
            session.add(LogEntryModel(text=entry))
            session.commit()

    def entries(self) -> list[str]:
        stmt = select(LogEntryModel.text).order_by(LogEntryModel.id)
        with self.session() as session:
            return list(session.execute(stmt).scalars().all())


class SqlStateStore(_SqlStore, StateStore):
    def load(self) -> RepositoryState | None:
        with self.session() as session:
            branches = session.execute(select(BranchModel)).scalars().all()
            if not branches:
                return None

            current = None
            state_branches: dict[str, BranchState] = {}
            for branch in branches:
                if branch.is_current:
                    current = branch.name
                state_branches[branch.name] = BranchState(head=branch.head_id)

            for item in session.execute(select(StagedItemModel)).scalars():
                branch_state = state_branches[item.branch_name]
                if item.blob_id is None:
                    branch_state.staged_removals.add(item.path)
                else:
                    branch_state.staged_additions[item.path] = item.blob_id

            message_index: dict[str, list[str]] = {}
            stmt = select(MessageIndexModel).order_by(
                MessageIndexModel.message, MessageIndexModel.position
            )
            for row in session.execute(stmt).scalars():
                message_index.setdefault(row.message, []).append(row.commit_id)

        if current is None:
            raise StorageError("Saved repository state has no current branch")
        return RepositoryState(
            current_branch=current,
            branches=state_branches,
            message_index=message_index,
        )

    def save(self, state: RepositoryState) -> None:
        with self.session() as session:
            session.execute(delete(StagedItemModel))
            session.execute(delete(MessageIndexModel))
            session.execute(delete(BranchModel))

            for name, branch in state.branches.items():
                session.add(
                    BranchModel(
                        name=name,
                        head_id=branch.head,
                        is_current=name == state.current_branch,
                    )
                )
                for path, blob_id in branch.staged_additions.items():
                    session.add(
                        StagedItemModel(branch_name=name, path=path, blob_id=blob_id)
                    )
                for path in branch.staged_removals:
                    session.add(
                        StagedItemModel(branch_name=name, path=path, blob_id=None)
                    )

            for message, ids in state.message_index.items():
                for position, commit_id in enumerate(ids):
                    session.add(
                        MessageIndexModel(
                            message=message, commit_id=commit_id, position=position
                        )
                    )
            session.commit()
        logger.debug("Saved state of {} branches", len(state.branches))


def create_sql_storage(session_maker: SessionMaker) -> Storage:
    return Storage(
        contents=SqlContentStore(session_maker),
        objects=SqlObjectStore(session_maker),
        log=SqlMessageLog(session_maker),
        state=SqlStateStore(session_maker),
    )


def create_sql_session_maker(db_url: str) -> SessionMaker:
    try:
        engine = create_engine(db_url)
        Base.metadata.create_all(engine)
    except SQLAlchemyError as e:
        raise StorageError(f"Cannot open database {db_url}: {e}") from e
    return sessionmaker(bind=engine)


def create_sql_repository(
    session_maker: SessionMaker,
    work_path: str | Path,
    **kwargs: Any,
) -> Repository:
    """Load the repository stored in the database, initializing it on first use."""
    storage = create_sql_storage(session_maker)
    fs = LocalFileSystem(work_path)
    if storage.state.load() is None:
        return Repository.init(storage, fs, **kwargs)
    return Repository.load(storage, fs, **kwargs)
