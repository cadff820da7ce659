from loguru import logger

from .base import Blob, ContentStore, FileSystem, ObjectStore, Storage
from .commit import Commit
from .errors import SnapVaultError, StorageError, UserError
from .merge import MergeOutcome, MergeResult
from .repository import Branch, Repository, Status
from .stage import Stage
from .impl.memory import create_memory_repository
from .impl.sql import create_sql_repository

# Silent until an application opts in through log_config.configure_logging().
logger.disable("snapvault")

__all__ = [
    "Blob",
    "Branch",
    "Commit",
    "ContentStore",
    "FileSystem",
    "MergeOutcome",
    "MergeResult",
    "ObjectStore",
    "Repository",
    "SnapVaultError",
    "Stage",
    "Status",
    "Storage",
    "StorageError",
    "UserError",
    "create_memory_repository",
    "create_sql_repository",
]
