"""Storage backend keeping uploads in Azure Blob Storage.

Each upload is kept as two block blobs in one container: ``<id>.info`` holds
the file info as JSON and ``<id>`` holds the uploaded bytes, staged as
uncommitted blocks until the upload is finished. Talking to Azure itself is
left to an :class:`AzService` implementation.
"""

from __future__ import annotations

import base64
import binascii
import copy
import io
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO

from .upload import FileInfo, NotFoundError, StoreComposer, new_uid

INFO_BLOB_SUFFIX = ".info"
BLOCK_BLOB_MAX_BLOCKS = 50_000
BLOCK_BLOB_MAX_STAGE_BLOCK_BYTES = 4000 * 1024 * 1024
MAX_BLOCK_BLOB_SIZE = BLOCK_BLOB_MAX_BLOCKS * BLOCK_BLOB_MAX_STAGE_BLOCK_BYTES
MAX_BLOCK_BLOB_CHUNK_SIZE = BLOCK_BLOB_MAX_STAGE_BLOCK_BYTES

_BLOCK_ID = struct.Struct("<I")


class AzureStoreError(RuntimeError):
    """Raised when the Azure store cannot complete an operation."""


@dataclass
class AzConfig:
    """Settings needed to reach a container in an Azure storage account."""

    account_name: str = ""
    account_key: str = ""
    blob_access_tier: str = ""
    container_name: str = ""
    container_access_type: str = ""
    endpoint: str = ""


class AzBlob(ABC):
    """A single blob in the container."""

    @abstractmethod
    def delete(self) -> None:
        """Delete the blob."""

    @abstractmethod
    def upload(self, body: BinaryIO) -> None:
        """Upload ``body`` to the blob (a block for data blobs, everything for info blobs)."""

    @abstractmethod
    def download(self) -> bytes:
        """Return the blob's contents."""

    @abstractmethod
    def get_offset(self) -> int:
        """Return the number of bytes stored so far."""

    @abstractmethod
    def commit(self) -> None:
        """Commit all uploaded blocks."""


class AzService(ABC):
    """Hands out blobs of one container by name."""

    @abstractmethod
    def new_blob(self, name: str) -> AzBlob:
        """Return the blob called ``name``."""


def block_id_to_base64(block_id: int) -> str:
    """Encode a block index as the base64 of its 4-byte little-endian form."""
    return base64.b64encode(_BLOCK_ID.pack(block_id & 0xFFFFFFFF)).decode("ascii")


def block_id_from_base64(block_id: str) -> int:
    """Decode a block ID produced by :func:`block_id_to_base64`."""
    try:
        raw = base64.b64decode(block_id, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"invalid block id: {block_id!r}") from err
    if len(raw) < _BLOCK_ID.size:
        raise ValueError(f"block id too short: {block_id!r}")
    return _BLOCK_ID.unpack_from(raw)[0]


def _check_size(size: int) -> None:
    if size > MAX_BLOCK_BLOB_SIZE:
        raise AzureStoreError(
            f"azurestore: max upload of {size} bytes exceeded "
            f"MaxBlockBlobSize of {MAX_BLOCK_BLOB_SIZE} bytes"
        )


class AzUpload:
    """One upload inside an :class:`AzureStore`."""

    def __init__(
        self,
        id: str,
        info_blob: AzBlob,
        block_blob: AzBlob,
        info_handler: FileInfo | None = None,
    ) -> None:
        self.id = id
        self.info_blob = info_blob
        self.block_blob = block_blob
        self.info_handler = info_handler

    def write_chunk(self, offset: int, src: BinaryIO) -> int:
        """Stage everything readable from ``src`` as a new block."""
        data = src.read()
        size = len(data)
        if size > MAX_BLOCK_BLOB_CHUNK_SIZE:
            raise AzureStoreError(
                f"azurestore: Chunk of size {size} too large. "
                f"Max chunk size is {MAX_BLOCK_BLOB_CHUNK_SIZE}"
            )
        self.block_blob.upload(io.BytesIO(data))
        if self.info_handler is not None:
            self.info_handler.offset += size
        return size

    def get_info(self) -> FileInfo:
        if self.info_handler is not None:
            return copy.deepcopy(self.info_handler)
        info = FileInfo.from_json(self.info_blob.download())
        self.info_handler = info
        return copy.deepcopy(info)

    def get_reader(self) -> BinaryIO:
        return io.BytesIO(self.block_blob.download())

    def finish_upload(self) -> None:
        self.block_blob.commit()

    def terminate(self) -> None:
        self.info_blob.delete()
        self.block_blob.delete()

    def declare_length(self, length: int) -> None:
        if self.info_handler is None:
            self.get_info()
        assert self.info_handler is not None
        self.info_handler.size = length
        self.info_handler.size_is_deferred = False
        self._write_info()

    def _write_info(self) -> None:
        if self.info_handler is None:
            raise AzureStoreError("azurestore: no file info to write")
        self.info_blob.upload(io.BytesIO(self.info_handler.to_json()))


class AzureStore:
    """Uploads stored in the container served by ``service``."""

    def __init__(self, service: AzService, object_prefix: str = "", container: str = "") -> None:
        self.service = service
        self.object_prefix = object_prefix
        self.container = container

    def use_in(self, composer: StoreComposer) -> None:
        composer.use_core(self)
        composer.use_terminater(self)
        composer.use_length_deferrer(self)

    def new_upload(self, info: FileInfo) -> AzUpload:
        info = copy.deepcopy(info)
        if not info.id:
            info.id = new_uid()
        _check_size(info.size)

        key = self._key_with_prefix(info.id)
        block_blob = self.service.new_blob(key)
        info_blob = self.service.new_blob(self._key_with_prefix(info.id + INFO_BLOB_SUFFIX))

        info.storage = {"Type": "azurestore", "Container": self.container, "Key": key}
        upload = AzUpload(info.id, info_blob, block_blob, info)
        try:
            upload._write_info()
        except Exception as err:
            raise AzureStoreError(f"azurestore: unable to create InfoHandler file:\n{err}") from err
        return upload

    def get_upload(self, id: str) -> AzUpload:
        info_blob = self.service.new_blob(self._key_with_prefix(id + INFO_BLOB_SUFFIX))
        info = FileInfo.from_json(info_blob.download())
        _check_size(info.size)

        block_blob = self.service.new_blob(self._key_with_prefix(info.id))
        try:
            offset = block_blob.get_offset()
        except NotFoundError:
            offset = 0
        info.offset = offset
        return AzUpload(id, info_blob, block_blob, info)

    def as_terminatable_upload(self, upload: AzUpload) -> AzUpload:
        return _expect_az_upload(upload)

    def as_length_declarable_upload(self, upload: AzUpload) -> AzUpload:
        return _expect_az_upload(upload)

    def _key_with_prefix(self, key: str) -> str:
        prefix = self.object_prefix
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        return prefix + key


def _expect_az_upload(upload: object) -> AzUpload:
    if not isinstance(upload, AzUpload):
        raise TypeError(f"expected an AzUpload, got {type(upload).__name__}")
    return upload