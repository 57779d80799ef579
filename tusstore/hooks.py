"""Hooks that notify external programs or services about upload events.

A hook handler receives a :class:`HookEvent` for each event type that is
enabled. Handlers can run an executable from a directory, POST the event to
an HTTP endpoint or call methods on an in-process object.
"""

from __future__ import annotations

import json
import os
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import requests
from requests.structures import CaseInsensitiveDict

from .upload import FileInfo


class HookType(str, Enum):
    """The events a hook can be invoked for."""

    POST_FINISH = "post-finish"
    POST_TERMINATE = "post-terminate"
    POST_RECEIVE = "post-receive"
    POST_CREATE = "post-create"
    PRE_CREATE = "pre-create"
    PRE_FINISH = "pre-finish"

    def __str__(self) -> str:
        return self.value


AVAILABLE_HOOKS: tuple[HookType, ...] = (
    HookType.PRE_CREATE,
    HookType.POST_CREATE,
    HookType.POST_RECEIVE,
    HookType.POST_TERMINATE,
    HookType.POST_FINISH,
    HookType.PRE_FINISH,
)


@dataclass
class HTTPRequest:
    """The parts of the client request that are passed on to hooks."""

    method: str = ""
    uri: str = ""
    remote_addr: str = ""
    header: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class HookEvent:
    """An upload together with the request that caused the event."""

    upload: FileInfo = field(default_factory=FileInfo)
    http_request: HTTPRequest = field(default_factory=HTTPRequest)

    def to_json(self) -> bytes:
        """Serialise the event to the JSON document sent to hooks."""
        document = {
            "Upload": json.loads(self.upload.to_json()),
            "HTTPRequest": {
                "Method": self.http_request.method,
                "URI": self.http_request.uri,
                "RemoteAddr": self.http_request.remote_addr,
                "Header": {key: list(values) for key, values in self.http_request.header.items()},
            },
        }
        return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class HookError(Exception):
    """Raised when a hook fails.

    ``status_code`` and ``body`` describe the response to send to the client
    (set by HTTP hooks); ``return_code`` is the code the hook itself returned.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        body: bytes = b"",
        return_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.return_code = status_code if return_code is None else return_code


class HookHandler(ABC):
    """Something that can be told about upload events."""

    @abstractmethod
    def setup(self) -> None:
        """Prepare the handler before the first invocation."""

    @abstractmethod
    def invoke_hook(
        self, typ: HookType | str, info: HookEvent, capture_output: bool
    ) -> tuple[bytes | None, int]:
        """Run the hook; return its output (when captured) and return code."""


@dataclass
class FileHook(HookHandler):
    """Runs the executable named after the event type inside ``directory``."""

    directory: str

    def setup(self) -> None:
        return None

    def invoke_hook(
        self, typ: HookType | str, info: HookEvent, capture_output: bool
    ) -> tuple[bytes | None, int]:
        typ = HookType(typ)
        hook_path = self.directory + os.sep + typ.value
        env = dict(os.environ)
        env["TUS_ID"] = info.upload.id
        env["TUS_SIZE"] = str(info.upload.size)
        env["TUS_OFFSET"] = str(info.upload.offset)

        try:
            completed = subprocess.run(
                [hook_path],
                input=info.to_json(),
                env=env,
                cwd=self.directory,
                stdout=subprocess.PIPE if capture_output else None,
                check=False,
            )
        except FileNotFoundError:
            # A missing hook only means that this event is not handled.
            return None, -1
        except OSError as err:
            raise HookError(str(err), return_code=-1) from err

        output = completed.stdout if capture_output else None
        code = completed.returncode
        if code < 0:
            raise HookError(f"signal: {-code}", body=output or b"", return_code=-1)
        if code != 0:
            raise HookError(f"exit status {code}", body=output or b"", return_code=code)
        return output, code


def _canonical_header_key(key: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


@dataclass
class HttpHook(HookHandler):
    """POSTs each event as JSON to ``endpoint``, retrying with a fixed backoff."""

    endpoint: str
    max_retries: int = 3
    backoff: float = 1
    forward_headers: list[str] = field(default_factory=list)
    timeout: float | None = None

    def setup(self) -> None:
        return None

    def invoke_hook(
        self, typ: HookType | str, info: HookEvent, capture_output: bool
    ) -> tuple[bytes | None, int]:
        typ = HookType(typ)
        headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
        for key in self.forward_headers:
            values = info.http_request.header.get(_canonical_header_key(key))
            if values is not None:
                headers[key] = ", ".join(values)
        headers["Hook-Name"] = typ.value
        headers["Content-Type"] = "application/json"

        response = self._send(info.to_json(), headers)
        body = response.content
        if response.status_code >= 400:
            raise HookError(
                f"endpoint returned: {response.status_code} {response.reason}",
                response.status_code,
                body,
            )
        return (body if capture_output else None), response.status_code

    def _send(self, payload: bytes, headers: CaseInsensitiveDict[str]) -> requests.Response:
        attempts = max(1, self.max_retries)
        with requests.Session() as session:
            for attempt in range(1, attempts + 1):
                try:
                    response = session.post(
                        self.endpoint, data=payload, headers=headers, timeout=self.timeout
                    )
                except requests.RequestException as err:
                    if attempt == attempts:
                        raise HookError(str(err)) from err
                else:
                    if response.status_code < 500 or attempt == attempts:
                        return response
                time.sleep(self.backoff)
        raise HookError("hooks: no request was sent")


_PLUGIN_METHODS: dict[HookType, str] = {
    HookType.PRE_CREATE: "pre_create",
    HookType.POST_CREATE: "post_create",
    HookType.POST_RECEIVE: "post_receive",
    HookType.POST_FINISH: "post_finish",
    HookType.POST_TERMINATE: "post_terminate",
    HookType.PRE_FINISH: "pre_finish",
}


@dataclass
class PluginHook(HookHandler):
    """Calls the method of ``handler`` named after the event type.

    The handler must provide ``pre_create``, ``post_create``,
    ``post_receive``, ``post_finish``, ``post_terminate`` and ``pre_finish``,
    each taking a :class:`HookEvent`.
    """

    handler: Any

    def setup(self) -> None:
        missing = [
            name for name in _PLUGIN_METHODS.values() if not callable(getattr(self.handler, name, None))
        ]
        if missing:
            raise TypeError(
                f"hooks: could not use {type(self.handler).__name__} as a plugin hook handler, "
                f"missing: {', '.join(missing)}"
            )

    def invoke_hook(
        self, typ: HookType | str, info: HookEvent, capture_output: bool
    ) -> tuple[bytes | None, int]:
        try:
            method_name = _PLUGIN_METHODS[HookType(typ)]
        except ValueError:
            raise HookError(f"hooks: unknown hook named {typ}", return_code=1) from None
        try:
            getattr(self.handler, method_name)(info)
        except Exception as err:
            raise HookError(str(err), return_code=1) from err
        return None, 0


def parse_enabled_hooks(value: str) -> list[HookType]:
    """Parse a comma separated list of event names; empty means all events."""
    enabled: list[HookType] = []
    if value:
        for name in value.split(","):
            try:
                enabled.append(HookType(name))
            except ValueError:
                raise ValueError(
                    f"Unknown hook event type in -hooks-enabled-events flag: {name}"
                ) from None
    if not enabled:
        enabled = list(AVAILABLE_HOOKS)
    return enabled