"""Object storage backend on an S3-compatible bucket.

Files are objects; a directory is a key prefix ending in ``/``, optionally
marked by an empty object with that key.
"""

from __future__ import annotations

import io
import logging
import mimetypes
import os
import posixpath
import shutil
import zipfile
from typing import Any, BinaryIO
from urllib.parse import quote_plus, urlsplit

from .storage import (
    CREATE_BACKEND_CLIENT,
    CREATE_DIRECTORY,
    DELETE_FILE,
    DOWNLOAD_FILE,
    LIST_FILES,
    UPLOAD_FILE,
    Backend,
    FileInfo,
    StorageError,
)

logger = logging.getLogger(__name__)

_NO_SUCH_KEY = "NoSuchKey"
_DEFAULT_CONTENT_TYPE = "application/octet-stream"


def ensure_trailing_slash(path: str) -> str:
    """Return ``path`` ending in exactly the slash that marks a directory."""
    return path if path.endswith("/") else path + "/"


def content_disposition(file_name: str) -> str:
    """Attachment header value offering ``file_name`` for download."""
    escaped = quote_plus(file_name, safe="")
    return f"attachment; filename=\"{escaped}\"; filename*=UTF-8''{escaped}"


def _join(*parts: str) -> str:
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    return posixpath.normpath(joined)


def _base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def _detect_content_type(path: str) -> str:
    guessed, _ = mimetypes.guess_type(path)
    return guessed or _DEFAULT_CONTENT_TYPE


def _is_missing_key(error: BaseException) -> bool:
    return _NO_SUCH_KEY in str(error)


class _ResponseStream(io.RawIOBase):
    """Unseekable binary stream that writes into a response."""

    def __init__(self, response: Any) -> None:
        super().__init__()
        self._response = response

    def writable(self) -> bool:
        return True

    def write(self, data: Any) -> int:
        chunk = bytes(data)
        self._response.write(chunk)
        return len(chunk)


class ObjectStoreBackend(Backend):
    """Storage backend over one bucket of an S3-compatible client.

    ``client`` provides ``bucket_exists(bucket)``, ``stat_object(bucket, key)``,
    ``list_objects(bucket, prefix, recursive, max_keys=0)``,
    ``put_object(bucket, key, data, length, content_type)``,
    ``get_object(bucket, key)`` returning a binary reader,
    ``remove_object(bucket, key)``, ``copy_object(bucket, source, destination)``
    and an ``endpoint_url`` string. Object records carry ``key``, ``size``,
    ``last_modified`` and ``content_type``.
    """

    def __init__(self, client: Any, bucket: str) -> None:
        try:
            found = client.bucket_exists(bucket)
        except Exception as exc:
            raise StorageError(CREATE_BACKEND_CLIENT, exc, path=bucket) from exc
        if not found:
            raise StorageError(
                CREATE_BACKEND_CLIENT, LookupError(f"bucket {bucket} does not exist"), path=bucket
            )
        self.client = client
        self.bucket = bucket

    @staticmethod
    def _file_info(record: Any) -> FileInfo:
        return FileInfo(
            name=_base(record.key),
            path=record.key,
            size=record.size,
            last_modified=record.last_modified,
            content_type=record.content_type,
        )

    def upload(self, src: str, dst: str) -> None:
        """Upload a local file, or a directory tree under its own name, below ``dst``."""
        try:
            is_dir = os.path.isdir(src)
            os.stat(src)
        except OSError as exc:
            raise StorageError(UPLOAD_FILE, exc, path=src) from exc
        if is_dir:
            self._upload_directory(src, dst)
        else:
            self._upload_file(src, _join(dst, os.path.basename(src)))

    def _upload_file(self, src: str, dst: str) -> None:
        try:
            handle = open(src, "rb")
        except OSError as exc:
            raise StorageError(UPLOAD_FILE, exc, path=src) from exc
        with handle:
            size = os.fstat(handle.fileno()).st_size
            content_type = _detect_content_type(src)
            try:
                self.client.put_object(self.bucket, dst, handle, size, content_type)
            except Exception as exc:
                raise StorageError(UPLOAD_FILE, exc, path=src) from exc

    def _upload_directory(self, src: str, dst: str) -> None:
        base_dir = os.path.basename(os.path.normpath(src))

        def _raise(error: OSError) -> None:
            raise error

        for root, dirs, files in os.walk(src, onerror=_raise):
            dirs.sort()
            for file_name in sorted(files):
                file_path = os.path.join(root, file_name)
                relative = os.path.relpath(file_path, src).replace(os.sep, "/")
                self._upload_file(file_path, _join(dst, base_dir, relative))

    def download(self, src: str, response: Any) -> None:
        """Write a file, or a directory as a zip archive, into ``response``.

        ``response`` has a mutable ``headers`` mapping and a ``write(bytes)`` method.
        """
        try:
            files = self.list(src, True, True)
        except Exception as exc:
            raise StorageError(DOWNLOAD_FILE, exc, path=src) from exc

        if len(files) == 1 and files[0].path == src:
            self._download_file(files[0], response)
        else:
            self._download_directory(src, files, response)

    def _copy_object_to(self, key: str, writer: BinaryIO) -> None:
        reader = self.client.get_object(self.bucket, key)
        try:
            shutil.copyfileobj(reader, writer)
        finally:
            close = getattr(reader, "close", None)
            if close is not None:
                close()

    def _download_file(self, file: FileInfo, response: Any) -> None:
        file_name = _base(file.path)
        response.headers["Content-Type"] = file.content_type
        response.headers["Content-Disposition"] = content_disposition(file_name)
        self._copy_object_to(file.path, _ResponseStream(response))

    def _download_directory(self, src_dir: str, files: list[FileInfo], response: Any) -> None:
        zip_name = _base(src_dir) + ".zip"
        response.headers["Content-Type"] = "application/zip"
        response.headers["Content-Disposition"] = content_disposition(zip_name)

        with zipfile.ZipFile(_ResponseStream(response), "w") as archive:
            for file in files:
                relative = file.path[len(src_dir):] if file.path.startswith(src_dir) else file.path
                try:
                    entry = archive.open(relative, "w")
                except Exception as exc:
                    raise StorageError(DOWNLOAD_FILE, exc, path=file.path) from exc
                with entry:
                    try:
                        self._copy_object_to(file.path, entry)
                    except Exception as exc:
                        raise StorageError(DOWNLOAD_FILE, exc, path=file.name) from exc

    def delete(self, object_name: str) -> None:
        """Remove an object, or every object below a directory prefix."""
        try:
            files = self.list(object_name, True, False)
        except Exception as exc:
            raise StorageError(LIST_FILES, exc, path=object_name) from exc
        for file in files:
            try:
                self.client.remove_object(self.bucket, file.path)
            except Exception as exc:
                if not _is_missing_key(exc):
                    raise StorageError(DELETE_FILE, exc, path=file.path) from exc

    def _get(self, object_name: str) -> FileInfo:
        return self._file_info(self.client.stat_object(self.bucket, object_name))

    def list(self, prefix: str, recursive: bool = False, skip_itself: bool = False) -> list[FileInfo]:
        """The object named ``prefix`` if it is a file, otherwise the objects below it."""
        try:
            return [self._get(prefix)]
        except Exception:
            pass

        prefix = ensure_trailing_slash(prefix)
        infos = []
        for record in self.client.list_objects(self.bucket, prefix, recursive):
            if skip_itself and record.key == prefix:
                continue
            infos.append(self._file_info(record))
        return infos

    def create_directory(self, path: str) -> None:
        """Create an empty directory marker unless the directory already exists."""
        path = ensure_trailing_slash(path)
        try:
            exists = self._directory_exists(path)
        except Exception as exc:
            raise StorageError(CREATE_DIRECTORY, exc, path=path) from exc
        if exists:
            return
        self.client.put_object(self.bucket, path, io.BytesIO(b""), 0, "")

    def delete_directory(self, path: str) -> None:
        """Remove a directory marker; a missing marker is not an error."""
        path = ensure_trailing_slash(path)
        try:
            self.client.remove_object(self.bucket, path)
        except Exception as exc:
            if not _is_missing_key(exc):
                raise StorageError(DELETE_FILE, exc, path=path) from exc

    def object_url(self, object_name: str) -> str:
        """Virtual-host style URL of an object."""
        endpoint = urlsplit(self.client.endpoint_url)
        return f"{endpoint.scheme}://{self.bucket}.{endpoint.netloc}/{object_name}"

    def copy(self, src: str, dst: str) -> None:
        """Copy a file, or every file below a directory, to ``dst``."""
        try:
            files = self.list(src, True, True)
        except Exception as exc:
            raise StorageError(LIST_FILES, exc, path=src) from exc
        for file in files:
            relative = file.path[len(src):] if file.path.startswith(src) else file.path
            target = _join(dst, relative)
            try:
                self.client.copy_object(self.bucket, file.path, target)
            except Exception as exc:
                raise StorageError(UPLOAD_FILE, exc, path=target) from exc

    def _directory_exists(self, path: str) -> bool:
        for record in self.client.list_objects(self.bucket, path, False, max_keys=1):
            if record.key.startswith(path):
                return True
        return False