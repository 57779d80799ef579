"""Storage backend keeping uploads on the local file system.

Each upload is kept as two files in one directory: ``<id>.info`` holds the
file info as JSON and ``<id>`` holds the raw uploaded bytes. Nothing is ever
cleaned up automatically.
"""

from __future__ import annotations

import copy
import os
import shutil
from dataclasses import dataclass
from typing import BinaryIO, Iterable

from .upload import FileInfo, NotFoundError, StoreComposer, new_uid

_FILE_PERM = 0o664
_CHUNK = 64 * 1024


@dataclass(frozen=True)
class FileStore:
    """Uploads stored in ``path``, which must already exist."""

    path: str

    def use_in(self, composer: StoreComposer) -> None:
        composer.use_core(self)
        composer.use_terminater(self)
        composer.use_concater(self)
        composer.use_length_deferrer(self)

    def new_upload(self, info: FileInfo) -> FileUpload:
        info = copy.deepcopy(info)
        if not info.id:
            info.id = new_uid()
        bin_path = self._bin_path(info.id)
        info.storage = {"Type": "filestore", "Path": bin_path}

        try:
            fd = os.open(bin_path, os.O_CREAT | os.O_WRONLY, _FILE_PERM)
        except FileNotFoundError as err:
            raise FileNotFoundError(f"upload directory does not exist: {self.path}") from err
        os.close(fd)

        upload = FileUpload(info, self._info_path(info.id), bin_path)
        upload._write_info()
        return upload

    def get_upload(self, id: str) -> FileUpload:
        info_path = self._info_path(id)
        bin_path = self._bin_path(id)
        try:
            with open(info_path, "rb") as fh:
                data = fh.read()
        except FileNotFoundError as err:
            raise NotFoundError() from err
        info = FileInfo.from_json(data)
        try:
            info.offset = os.stat(bin_path).st_size
        except FileNotFoundError as err:
            raise NotFoundError() from err
        return FileUpload(info, info_path, bin_path)

    def as_terminatable_upload(self, upload: FileUpload) -> FileUpload:
        return _expect_file_upload(upload)

    def as_length_declarable_upload(self, upload: FileUpload) -> FileUpload:
        return _expect_file_upload(upload)

    def as_concatable_upload(self, upload: FileUpload) -> FileUpload:
        return _expect_file_upload(upload)

    def _bin_path(self, id: str) -> str:
        return os.path.join(os.fspath(self.path), id)

    def _info_path(self, id: str) -> str:
        return os.path.join(os.fspath(self.path), id + ".info")


def _expect_file_upload(upload: object) -> FileUpload:
    if not isinstance(upload, FileUpload):
        raise TypeError(f"expected a FileUpload, got {type(upload).__name__}")
    return upload


class FileUpload:
    """One upload inside a :class:`FileStore`."""

    def __init__(self, info: FileInfo, info_path: str, bin_path: str) -> None:
        self.info = info
        self.info_path = info_path
        self.bin_path = bin_path

    def get_info(self) -> FileInfo:
        return copy.deepcopy(self.info)

    def write_chunk(self, offset: int, src: BinaryIO) -> int:
        """Append everything readable from ``src``; return the byte count."""
        written = 0
        try:
            with open(self.bin_path, "ab") as fh:
                while chunk := src.read(_CHUNK):
                    fh.write(chunk)
                    written += len(chunk)
        finally:
            self.info.offset += written
        return written

    def get_reader(self) -> BinaryIO:
        return open(self.bin_path, "rb")

    def terminate(self) -> None:
        os.remove(self.info_path)
        os.remove(self.bin_path)

    def concat_uploads(self, uploads: Iterable[FileUpload]) -> None:
        with open(self.bin_path, "ab") as dst:
            for partial in uploads:
                partial = _expect_file_upload(partial)
                with open(partial.bin_path, "rb") as src:
                    shutil.copyfileobj(src, dst)

    def declare_length(self, length: int) -> None:
        self.info.size = length
        self.info.size_is_deferred = False
        self._write_info()

    def finish_upload(self) -> None:
        return None

    def _write_info(self) -> None:
        data = self.info.to_json()
        fd = os.open(self.info_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, _FILE_PERM)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)