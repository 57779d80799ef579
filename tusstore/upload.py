"""Upload metadata, errors and helpers shared by the storage backends."""

from __future__ import annotations

import json
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, BinaryIO


class NotFoundError(LookupError):
    """Raised when an upload does not exist in a store."""

    status_code = 404

    def __init__(self, message: str = "upload not found") -> None:
        super().__init__(message)


class FileLockedError(RuntimeError):
    """Raised when an upload is already locked by someone else."""

    status_code = 423

    def __init__(self, message: str = "file currently locked") -> None:
        super().__init__(message)


def new_uid() -> str:
    """Return 128 random bits from a strong source as a hex string."""
    return secrets.token_hex(16)


@dataclass
class FileInfo:
    """Everything a store knows about one upload."""

    id: str = ""
    size: int = 0
    size_is_deferred: bool = False
    offset: int = 0
    meta_data: dict[str, str] = field(default_factory=dict)
    is_partial: bool = False
    is_final: bool = False
    partial_uploads: list[str] = field(default_factory=list)
    storage: dict[str, str] = field(default_factory=dict)

    def to_json(self) -> bytes:
        """Serialise to the compact JSON document kept in ``.info`` files."""
        document = {
            "ID": self.id,
            "Size": self.size,
            "SizeIsDeferred": self.size_is_deferred,
            "Offset": self.offset,
            "MetaData": dict(sorted(self.meta_data.items())),
            "IsPartial": self.is_partial,
            "IsFinal": self.is_final,
            "PartialUploads": list(self.partial_uploads),
            "Storage": dict(sorted(self.storage.items())),
        }
        return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> FileInfo:
        """Parse a JSON document as written by :meth:`to_json`."""
        document: Any = json.loads(data)
        if not isinstance(document, dict):
            raise ValueError("file info must be a JSON object")
        return cls(
            id=document.get("ID") or "",
            size=int(document.get("Size") or 0),
            size_is_deferred=bool(document.get("SizeIsDeferred")),
            offset=int(document.get("Offset") or 0),
            meta_data=dict(document.get("MetaData") or {}),
            is_partial=bool(document.get("IsPartial")),
            is_final=bool(document.get("IsFinal")),
            partial_uploads=list(document.get("PartialUploads") or []),
            storage=dict(document.get("Storage") or {}),
        )


class BodyReader:
    """Wrap a request body, swallowing read errors and counting bytes.

    A failing read is reported to the consumer as end of stream; the
    exception is kept and can be inspected through :meth:`error`.
    """

    def __init__(self, reader: BinaryIO) -> None:
        self._reader = reader
        self._error: BaseException | None = None
        self._eof = False
        self._count = 0
        self._lock = threading.Lock()

    def read(self, size: int = -1) -> bytes:
        if self._error is not None or self._eof:
            return b""
        try:
            chunk = self._reader.read(size)
        except Exception as exc:  # noqa: BLE001 - stored for the caller
            self._error = exc
            return b""
        if chunk is None:
            chunk = b""
        if not chunk and size != 0:
            self._eof = True
        with self._lock:
            self._count += len(chunk)
        return chunk

    def error(self) -> BaseException | None:
        """Return the exception raised by the wrapped reader, if any."""
        return self._error

    def bytes_read(self) -> int:
        with self._lock:
            return self._count


@dataclass
class StoreComposer:
    """Collects the core store and the optional extensions a handler uses."""

    core: Any = None
    terminater: Any = None
    concater: Any = None
    length_deferrer: Any = None
    locker: Any = None

    def use_core(self, core: Any) -> None:
        self.core = core

    def use_terminater(self, ext: Any) -> None:
        self.terminater = ext

    def use_concater(self, ext: Any) -> None:
        self.concater = ext

    def use_length_deferrer(self, ext: Any) -> None:
        self.length_deferrer = ext

    def use_locker(self, ext: Any) -> None:
        self.locker = ext