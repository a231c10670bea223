"""Storage backend interface for registry files and its error type."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

CREATE_BACKEND_CLIENT = "create backend client failed: {cause}"
CREATE_DIRECTORY = "create directory {path} failed: {cause}"
UPLOAD_FILE = "upload file {path} failed: {cause}"
DOWNLOAD_FILE = "download file {path} failed: {cause}"
LIST_FILES = "list files with prefix {path} failed: {cause}"
DELETE_FILE = "delete file {path} failed: {cause}"


class StorageError(Exception):
    """A storage operation failed; the underlying error is kept as the cause."""

    def __init__(self, template: str, cause: BaseException, path: str = "") -> None:
        super().__init__(template.format(path=path, cause=cause))
        self.path = path
        self.__cause__ = cause


@dataclass(frozen=True)
class FileInfo:
    """Metadata about a stored file."""

    name: str
    path: str
    size: int
    last_modified: datetime
    content_type: str


class Backend(ABC):
    """Operations a storage backend offers.

    A ``response`` passed to :meth:`download` has a mutable ``headers`` mapping
    and a ``write(data: bytes)`` method.
    """

    @abstractmethod
    def upload(self, src: str, dst: str) -> None:
        """Upload a local file or directory ``src`` under ``dst``."""

    @abstractmethod
    def download(self, src: str, response: Any) -> None:
        """Write a stored file, or a directory as a zip archive, to ``response``."""

    @abstractmethod
    def delete(self, object_name: str) -> None:
        """Delete an object or everything under a prefix."""

    @abstractmethod
    def list(self, prefix: str, recursive: bool, skip_itself: bool) -> list[FileInfo]:
        """List the files under ``prefix``."""

    @abstractmethod
    def copy(self, src: str, dst: str) -> None:
        """Copy a file or directory from ``src`` to ``dst``."""

    @abstractmethod
    def create_directory(self, path: str) -> None:
        """Create an empty directory marker at ``path``."""

    @abstractmethod
    def delete_directory(self, path: str) -> None:
        """Remove the directory marker at ``path``."""

    @abstractmethod
    def object_url(self, object_name: str) -> str:
        """Return the URL under which ``object_name`` is reachable."""