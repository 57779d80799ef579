import json
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from tusstore.hooks import (
    AVAILABLE_HOOKS,
    FileHook,
    HookError,
    HookEvent,
    HookType,
    HttpHook,
    HTTPRequest,
    PluginHook,
    parse_enabled_hooks,
)
from tusstore.upload import FileInfo


def _event() -> HookEvent:
    return HookEvent(
        upload=FileInfo(id="abc", size=10, offset=4, meta_data={"foo": "bar"}),
        http_request=HTTPRequest(
            method="PATCH",
            uri="/files/abc",
            remote_addr="127.0.0.1:4000",
            header={"X-Custom": ["a", "b"], "Authorization": ["Bearer token"]},
        ),
    )


def _script(directory, name, body):
    path = directory / name
    path.write_text("#!/bin/sh\n" + body)
    os.chmod(path, 0o755)
    return path


class _Recorder:
    def __init__(self):
        self.requests = []
        self.responses = [(200, b"ok")]


@pytest.fixture
def hook_server():
    recorder = _Recorder()

    class Handler(BaseHTTPRequestHandler):
        def do_POST(self):
            length = int(self.headers.get("Content-Length", 0))
            body = self.rfile.read(length)
            headers = {key.lower(): value for key, value in self.headers.items()}
            recorder.requests.append((headers, body))
            if len(recorder.responses) > 1:
                status, payload = recorder.responses.pop(0)
            else:
                status, payload = recorder.responses[0]
            self.send_response(status)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_port}/hook", recorder
    server.shutdown()
    server.server_close()


def test_hook_type_values():
    hooks = parse_enabled_hooks("post-finish,pre-create,post-receive")
    assert [hook.value for hook in hooks] == ["post-finish", "pre-create", "post-receive"]
    assert hooks == [HookType.POST_FINISH, HookType.PRE_CREATE, HookType.POST_RECEIVE]
    assert str(hooks[2]) == "post-receive"


def test_parse_enabled_hooks_empty_means_all():
    assert parse_enabled_hooks("") == list(AVAILABLE_HOOKS)
    assert len(AVAILABLE_HOOKS) == len(set(HookType))


def test_parse_enabled_hooks_subset():
    assert parse_enabled_hooks("post-create,post-finish") == [
        HookType.POST_CREATE,
        HookType.POST_FINISH,
    ]


@pytest.mark.parametrize("value", ["unknown", "post-create,,post-finish", "post-create, post-finish"])
def test_parse_enabled_hooks_rejects_unknown(value):
    with pytest.raises(ValueError, match="Unknown hook event type"):
        parse_enabled_hooks(value)


def test_hook_event_json_round_trip():
    event = _event()
    document = json.loads(event.to_json())
    assert FileInfo.from_json(json.dumps(document["Upload"])) == event.upload
    assert document["HTTPRequest"]["Method"] == "PATCH"
    assert document["HTTPRequest"]["URI"] == "/files/abc"
    assert document["HTTPRequest"]["RemoteAddr"] == "127.0.0.1:4000"
    assert document["HTTPRequest"]["Header"]["X-Custom"] == ["a", "b"]


def test_hook_error_attributes():
    err = HookError("failed", 403, b"denied")
    assert err.status_code == 403
    assert err.body == b"denied"
    assert err.return_code == 403
    assert str(err) == "failed"


def test_file_hook_missing_script_is_ignored(tmp_path):
    hook = FileHook(str(tmp_path))
    hook.setup()
    assert hook.invoke_hook(HookType.POST_CREATE, _event(), True) == (None, -1)


def test_file_hook_passes_env_and_stdin(tmp_path):
    _script(tmp_path, "pre-create", 'printf "%s|%s|%s\\n" "$TUS_ID" "$TUS_SIZE" "$TUS_OFFSET"\ncat\n')
    event = _event()
    output, code = FileHook(str(tmp_path)).invoke_hook(HookType.PRE_CREATE, event, True)
    assert code == 0
    first, rest = output.split(b"\n", 1)
    assert first == b"abc|10|4"
    assert json.loads(rest) == json.loads(event.to_json())


def test_file_hook_without_capture_returns_no_output(tmp_path):
    _script(tmp_path, "post-finish", "exit 0\n")
    assert FileHook(str(tmp_path)).invoke_hook("post-finish", _event(), False) == (None, 0)


def test_file_hook_failure_reports_return_code(tmp_path):
    _script(tmp_path, "pre-create", "echo failing\nexit 3\n")
    with pytest.raises(HookError) as info:
        FileHook(str(tmp_path)).invoke_hook(HookType.PRE_CREATE, _event(), True)
    assert info.value.return_code == 3
    assert info.value.body == b"failing\n"


def test_http_hook_posts_event(hook_server):
    url, recorder = hook_server
    recorder.responses = [(200, b"accepted")]
    hook = HttpHook(url, max_retries=1, backoff=0, forward_headers=["x-custom"])
    event = _event()
    output, code = hook.invoke_hook(HookType.POST_RECEIVE, event, True)
    assert (output, code) == (b"accepted", 200)
    headers, body = recorder.requests[0]
    assert headers["hook-name"] == "post-receive"
    assert headers["content-type"] == "application/json"
    assert headers["x-custom"] == "a, b"
    assert "authorization" not in headers
    assert json.loads(body) == json.loads(event.to_json())


def test_http_hook_without_capture(hook_server):
    url, recorder = hook_server
    recorder.responses = [(200, b"accepted")]
    assert HttpHook(url, backoff=0).invoke_hook(HookType.POST_CREATE, _event(), False) == (None, 200)


def test_http_hook_client_error(hook_server):
    url, recorder = hook_server
    recorder.responses = [(403, b"denied")]
    with pytest.raises(HookError, match="endpoint returned: 403") as info:
        HttpHook(url, max_retries=3, backoff=0).invoke_hook(HookType.PRE_CREATE, _event(), True)
    assert info.value.status_code == 403
    assert info.value.body == b"denied"
    assert len(recorder.requests) == 1


def test_http_hook_retries_server_errors(hook_server):
    url, recorder = hook_server
    recorder.responses = [(500, b"boom")]
    with pytest.raises(HookError) as info:
        HttpHook(url, max_retries=2, backoff=0).invoke_hook(HookType.PRE_CREATE, _event(), True)
    assert info.value.status_code == 500
    assert len(recorder.requests) == 2


def test_http_hook_recovers_after_server_error(hook_server):
    url, recorder = hook_server
    recorder.responses = [(503, b"busy"), (200, b"fine")]
    result = HttpHook(url, max_retries=3, backoff=0).invoke_hook(HookType.PRE_FINISH, _event(), True)
    assert result == (b"fine", 200)
    assert len(recorder.requests) == 2


class _Plugin:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def _record(self, name, event):
        self.calls.append((name, event.upload.id))
        if self.fail:
            raise RuntimeError("rejected")

    def pre_create(self, event):
        self._record("pre_create", event)

    def post_create(self, event):
        self._record("post_create", event)

    def post_receive(self, event):
        self._record("post_receive", event)

    def post_finish(self, event):
        self._record("post_finish", event)

    def post_terminate(self, event):
        self._record("post_terminate", event)

    def pre_finish(self, event):
        self._record("pre_finish", event)


def test_plugin_hook_dispatches_by_type():
    plugin = _Plugin()
    hook = PluginHook(plugin)
    hook.setup()
    assert hook.invoke_hook(HookType.POST_TERMINATE, _event(), True) == (None, 0)
    assert hook.invoke_hook("pre-finish", _event(), False) == (None, 0)
    assert plugin.calls == [("post_terminate", "abc"), ("pre_finish", "abc")]


def test_plugin_hook_failure():
    hook = PluginHook(_Plugin(fail=True))
    with pytest.raises(HookError, match="rejected") as info:
        hook.invoke_hook(HookType.PRE_CREATE, _event(), True)
    assert info.value.return_code == 1


def test_plugin_hook_unknown_type():
    with pytest.raises(HookError, match="hooks: unknown hook named") as info:
        PluginHook(_Plugin()).invoke_hook("not-a-hook", _event(), True)
    assert info.value.return_code == 1


def test_plugin_hook_setup_rejects_incomplete_handler():
    with pytest.raises(TypeError, match="pre_create"):
        PluginHook(object()).setup()