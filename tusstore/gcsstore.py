"""Storage backend keeping uploads in Google Cloud Storage.

Each upload is kept as a JSON info object ``<id>.info`` and a series of
chunk objects ``<id>_<n>``. When the upload is finished the chunks are
composed into the single object ``<id>``. Talking to GCS itself is left to
a :class:`GCSAPI` implementation.
"""

from __future__ import annotations

import copy
import io
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import BinaryIO, Iterable

from .upload import FileInfo, NotFoundError, StoreComposer, new_uid

CONCURRENT_SIZE_REQUESTS = 32


class GCSStoreError(RuntimeError):
    """Raised when the GCS store cannot complete an operation."""


@dataclass(frozen=True)
class GCSObjectParams:
    """Names one object in a bucket."""

    bucket: str
    id: str


@dataclass(frozen=True)
class GCSComposeParams:
    """Describes composing ``sources`` into ``destination`` inside ``bucket``."""

    bucket: str
    sources: list[str] = field(default_factory=list)
    destination: str = ""


@dataclass(frozen=True)
class GCSFilterParams:
    """Selects the objects in ``bucket`` whose names start with ``prefix``."""

    bucket: str
    prefix: str = ""


class GCSReader(ABC):
    """A readable GCS object."""

    @abstractmethod
    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes; all remaining bytes when negative."""

    @abstractmethod
    def size(self) -> int:
        """Total size of the object in bytes."""

    @abstractmethod
    def remain(self) -> int:
        """Bytes not yet read."""

    @abstractmethod
    def content_type(self) -> str:
        """Content type of the object."""

    @abstractmethod
    def close(self) -> None:
        """Release the reader."""


class GCSAPI(ABC):
    """The GCS operations the store needs.

    ``read_object`` raises :class:`NotFoundError` for a missing object.
    """

    @abstractmethod
    def read_object(self, params: GCSObjectParams) -> GCSReader:
        """Open an object for reading."""

    @abstractmethod
    def get_object_size(self, params: GCSObjectParams) -> int:
        """Return the size of an object in bytes."""

    @abstractmethod
    def set_object_metadata(self, params: GCSObjectParams, metadata: dict[str, str]) -> None:
        """Replace an object's custom metadata."""

    @abstractmethod
    def delete_object(self, params: GCSObjectParams) -> None:
        """Delete one object."""

    @abstractmethod
    def delete_objects_with_filter(self, params: GCSFilterParams) -> None:
        """Delete every object matched by the filter."""

    @abstractmethod
    def write_object(self, params: GCSObjectParams, src: BinaryIO) -> int:
        """Write everything readable from ``src`` to an object; return the byte count."""

    @abstractmethod
    def compose_objects(self, params: GCSComposeParams) -> None:
        """Concatenate the source objects into the destination object."""

    @abstractmethod
    def filter_objects(self, params: GCSFilterParams) -> list[str]:
        """Return the names matched by the filter, ordered as :func:`order_object_names` does."""


def order_object_names(names: Iterable[str]) -> list[str]:
    """Order object names by chunk index.

    Names ending in ``info`` are skipped. A name without ``_`` is a composed
    object and is returned alone. ``<uid>_<idx>`` names are placed at their
    index (gaps are left as empty strings) and temporary
    ``<uid>_tmp_<lvl>_<idx>`` names are appended as they come.
    """
    ordered: list[str] = []
    for name in names:
        if name.endswith("info"):
            continue
        file_name = name.split("/")[-1]
        parts = file_name.split("_")
        if len(parts) == 1:
            return [name]
        if len(parts) == 4:
            ordered.append(name)
            continue
        if len(parts) != 2:
            raise ValueError("Invalid filter format for object name")
        idx = int(parts[1])
        if idx < 0:
            raise ValueError(f"negative chunk index in object name: {name}")
        if len(ordered) <= idx:
            ordered.extend([""] * (idx - len(ordered) + 1))
        ordered[idx] = name
    return ordered


class GCSUpload:
    """One upload inside a :class:`GCSStore`."""

    def __init__(self, id: str, store: GCSStore) -> None:
        self.id = id
        self.store = store

    @property
    def _key(self) -> str:
        return self.store._key_with_prefix(self.id)

    def write_chunk(self, offset: int, src: BinaryIO) -> int:
        """Store ``src`` as the next chunk object; return the bytes written."""
        store = self.store
        names = store.service.filter_objects(GCSFilterParams(store.bucket, f"{self._key}_"))
        max_idx = max((int(name.split("_")[-1]) for name in names), default=-1)
        params = GCSObjectParams(store.bucket, f"{self._key}_{max_idx + 1}")
        return store.service.write_object(params, src)

    def get_info(self) -> FileInfo:
        """Read the info object, recompute the offset from the chunks and save it."""
        store = self.store
        params = GCSObjectParams(store.bucket, f"{self._key}.info")
        reader = store.service.read_object(params)
        data = reader.read(reader.size())
        info = FileInfo.from_json(data)

        names = store.service.filter_objects(GCSFilterParams(store.bucket, self._key))
        offset = 0
        if names:
            workers = min(CONCURRENT_SIZE_REQUESTS, len(names))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                sizes = pool.map(
                    lambda name: store.service.get_object_size(GCSObjectParams(store.bucket, name)),
                    names,
                )
                offset = sum(sizes)

        info.offset = offset
        store._write_info(self._key, info)
        return info

    def finish_upload(self) -> None:
        """Compose the chunks into the final object and attach the metadata."""
        store = self.store
        filter_params = GCSFilterParams(store.bucket, f"{self._key}_")
        names = store.service.filter_objects(filter_params)
        if not names:
            raise GCSStoreError(f"no GCS objects found with FilterObjects {filter_params}")

        store.service.compose_objects(
            GCSComposeParams(bucket=store.bucket, sources=list(names), destination=self._key)
        )
        store.service.delete_objects_with_filter(filter_params)

        info = self.get_info()
        store.service.set_object_metadata(GCSObjectParams(store.bucket, self._key), info.meta_data)

    def terminate(self) -> None:
        store = self.store
        store.service.delete_objects_with_filter(GCSFilterParams(store.bucket, self._key))

    def get_reader(self) -> GCSReader:
        store = self.store
        return store.service.read_object(GCSObjectParams(store.bucket, self._key))


@dataclass
class GCSStore:
    """Uploads stored in ``bucket`` through ``service``."""

    bucket: str
    service: GCSAPI
    object_prefix: str = ""

    def use_in(self, composer: StoreComposer) -> None:
        composer.use_core(self)
        composer.use_terminater(self)

    def new_upload(self, info: FileInfo) -> GCSUpload:
        info = copy.deepcopy(info)
        if not info.id:
            info.id = new_uid()
        key = self._key_with_prefix(info.id)
        info.storage = {"Type": "gcsstore", "Bucket": self.bucket, "Key": key}
        self._write_info(key, info)
        return GCSUpload(info.id, self)

    def get_upload(self, id: str) -> GCSUpload:
        return GCSUpload(id, self)

    def as_terminatable_upload(self, upload: GCSUpload) -> GCSUpload:
        if not isinstance(upload, GCSUpload):
            raise TypeError(f"expected a GCSUpload, got {type(upload).__name__}")
        return upload

    def _write_info(self, key: str, info: FileInfo) -> None:
        params = GCSObjectParams(self.bucket, f"{key}.info")
        self.service.write_object(params, io.BytesIO(info.to_json()))

    def _key_with_prefix(self, key: str) -> str:
        prefix = self.object_prefix
        if prefix and not prefix.endswith("/"):
            prefix += "/"
        return prefix + key


__all__ = [
    "CONCURRENT_SIZE_REQUESTS",
    "GCSAPI",
    "GCSComposeParams",
    "GCSFilterParams",
    "GCSObjectParams",
    "GCSReader",
    "GCSStore",
    "GCSStoreError",
    "GCSUpload",
    "NotFoundError",
    "order_object_names",
]