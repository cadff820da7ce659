import hashlib
from pathlib import Path

from snapvault.base import Blob, FileSystem, Hasher
from snapvault.errors import StorageError


class Sha1Hasher(Hasher):
    """Hex SHA-1 over the given parts; strings are hashed as UTF-8."""

    def digest(self, *parts: bytes | str) -> str:
        sha = hashlib.sha1()
        for part in parts:
            if isinstance(part, str):
                part = part.encode("utf-8")
            sha.update(part)
        return sha.hexdigest()


class LocalFileSystem(FileSystem):
    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).absolute()

    def _path(self, path: str) -> Path:
        return self.root / path

    def read(self, path: str) -> Blob:
        try:
            return self._path(path).read_bytes()
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    def write(self, path: str, content: Blob) -> None:
        file_path = self._path(path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_bytes(content)
        except OSError as e:
            raise StorageError(f"Cannot write {path}: {e}") from e

    def delete_if_plain_file(self, path: str) -> bool:
        file_path = self._path(path)
        if not file_path.is_file():
            return False
        try:
            file_path.unlink()
        except OSError as e:
            raise StorageError(f"Cannot delete {path}: {e}") from e
        return True

    def exists(self, path: str) -> bool:
        return self._path(path).is_file()

    def list_plain_files(self, directory: str = ".") -> list[str]:
        dir_path = self._path(directory)
        if not dir_path.is_dir():
            return []
        try:
            return sorted(entry.name for entry in dir_path.iterdir() if entry.is_file())
        except OSError as e:
            raise StorageError(f"Cannot list {directory}: {e}") from e
