from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timezone

import pytest

from clusterops.storage import (
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


@pytest.mark.parametrize(
    "template, path, expected",
    [
        (CREATE_BACKEND_CLIENT, "", "create backend client failed: boom"),
        (CREATE_DIRECTORY, "models/", "create directory models/ failed: boom"),
        (UPLOAD_FILE, "a.txt", "upload file a.txt failed: boom"),
        (DOWNLOAD_FILE, "a.txt", "download file a.txt failed: boom"),
        (LIST_FILES, "data/", "list files with prefix data/ failed: boom"),
        (DELETE_FILE, "a.txt", "delete file a.txt failed: boom"),
    ],
)
def test_storage_error_messages(template, path, expected):
    error = StorageError(template, OSError("boom"), path=path)
    assert str(error) == expected
    assert error.path == path


def test_storage_error_keeps_cause():
    cause = OSError("boom")
    with pytest.raises(StorageError) as info:
        raise StorageError(UPLOAD_FILE, cause, path="a.txt")
    assert info.value.__cause__ is cause


def test_backend_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Backend()


def test_file_info_is_immutable_value():
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    info = FileInfo("a.txt", "dir/a.txt", 3, stamp, "text/plain")
    assert replace(info, size=4).size == 4
    assert replace(info) == info
    with pytest.raises(FrozenInstanceError):
        info.size = 5