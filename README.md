# tusstore

Building blocks for a server that accepts resumable uploads using the tus
protocol:

- **Storage backends** keep an upload's data and its metadata:
  - `tusstore.filestore.FileStore` keeps them on the local disk.
  - `tusstore.azurestore.AzureStore` keeps them in Azure block blobs, through
    an `AzService` you supply.
  - `tusstore.gcsstore.GCSStore` keeps them in Google Cloud Storage, through a
    `GCSAPI` you supply.
- **Upload locking**: `tusstore.filelocker.FileLocker` uses lock files on
  disk, so only one holder at a time works on a given upload.
- **Hooks**: `tusstore.hooks` runs an executable from a directory
  (`FileHook`), POSTs events to an HTTP endpoint (`HttpHook`) or calls methods
  on a Python object (`PluginHook`).

Shared pieces live in `tusstore.upload`: the `FileInfo` dataclass (with
`to_json()` / `FileInfo.from_json()`), the `NotFoundError` and
`FileLockedError` exceptions, `new_uid()` for random 32-character hex ids,
`BodyReader` (wraps a request body, counts the bytes read and keeps a read
error for later instead of raising it) and `StoreComposer`, which collects a
core store and its extensions.

## Storing uploads on disk

Each upload is kept as two files in the store's directory: `<id>` holds the
raw bytes and `<id>.info` holds the metadata as JSON. The directory must
already exist; otherwise `new_upload` raises `FileNotFoundError`.

```python
import io

from tusstore.filelocker import FileLocker
from tusstore.filestore import FileStore
from tusstore.upload import FileInfo, StoreComposer

store = FileStore("./uploads")
composer = StoreComposer()
store.use_in(composer)
FileLocker("./uploads").use_in(composer)

upload = store.new_upload(FileInfo(size=11, meta_data={"filename": "hello.txt"}))
upload.write_chunk(0, io.BytesIO(b"hello world"))

info = upload.get_info()
print(info.id, info.offset, info.size)   # <random id> 11 11
```

A stored upload can be opened again by its id; the offset is taken from the
size of the data file:

```python
upload = store.get_upload(info.id)
with upload.get_reader() as reader:
    print(reader.read())                 # b'hello world'
```

An upload that does not exist raises `tusstore.upload.NotFoundError`. The
store also supports termination (`as_terminatable_upload(u).terminate()`),
deferred lengths (`as_length_declarable_upload(u).declare_length(n)`) and
concatenation of partial uploads
(`as_concatable_upload(final).concat_uploads(parts)`). Nothing is cleaned up
automatically.

## Locking

```python
from tusstore.filelocker import FileLocker
from tusstore.upload import FileLockedError

locker = FileLocker("./uploads")
lock = locker.new_lock("some-upload-id")   # ./uploads/some-upload-id.lock
with lock:
    ...  # work on the upload
```

`lock()` raises `FileLockedError` while the lock file belongs to a running
process (including the current one). A lock file left behind by a process
that no longer runs is taken over. `unlock()` on a lock that was never taken
does nothing.

## Cloud backends

`AzureStore` and `GCSStore` do not talk to the cloud themselves. They work
through a service object implementing the abstract classes `AzService` /
`AzBlob` or `GCSAPI` / `GCSReader`, which you provide (a real client or a
fake one in tests). Both accept an `object_prefix` that puts every object
under a pseudo-directory.

- `AzureStore(service, object_prefix="", container="")` stages each chunk as
  a block of the `<id>` blob and commits the block list in `finish_upload()`.
  Uploads larger than `MAX_BLOCK_BLOB_SIZE` and chunks larger than
  `MAX_BLOCK_BLOB_CHUNK_SIZE` raise `AzureStoreError`. Block ids are encoded
  with `block_id_to_base64()` and decoded with `block_id_from_base64()`.
- `GCSStore(bucket, service, object_prefix="")` writes each chunk as an object
  `<id>_<n>`. `get_info()` recomputes the offset from the chunk sizes and
  saves the info object. `finish_upload()` composes the chunks into `<id>`,
  deletes them and copies the upload's metadata onto the result.
  `order_object_names()` orders listed object names by chunk index, for use
  in `GCSAPI.filter_objects` implementations.

## Hooks

```python
from tusstore.hooks import FileHook, HookEvent, HookType, parse_enabled_hooks
from tusstore.upload import FileInfo

enabled = parse_enabled_hooks("pre-create,post-finish")
hook = FileHook(directory="./hooks")
hook.setup()
output, code = hook.invoke_hook(HookType.PRE_CREATE, HookEvent(upload=FileInfo(id="abc")), True)
```

`parse_enabled_hooks` returns all hook types for an empty string and raises
`ValueError` for an unknown name. `invoke_hook(typ, event, capture_output)`
returns the output (when captured) and the return code, and raises
`HookError` when the hook fails.

- `FileHook` runs the executable named after the hook type, e.g.
  `./hooks/post-finish`. It passes the event as JSON on standard input and
  sets `TUS_ID`, `TUS_SIZE` and `TUS_OFFSET` in the environment. A missing
  executable is ignored (return code `-1`); a non-zero exit raises
  `HookError`.
- `HttpHook(endpoint, max_retries=3, backoff=1, forward_headers=[], timeout=None)`
  POSTs the event as JSON with a `Hook-Name` header. It makes up to
  `max_retries` attempts, waiting `backoff` seconds between them, on network
  errors and 5xx responses. A final status of 400 or above raises `HookError`
  carrying `status_code` and `body`.
- `PluginHook(handler)` calls `pre_create`, `post_create`, `post_receive`,
  `post_finish`, `post_terminate` or `pre_finish` on `handler`; `setup()`
  checks that all of them exist.

## What this package does not do

It provides no HTTP server or request handler that speaks the tus protocol,
and no command-line program; you wire the stores, locker and hooks into your
own server. It ships no concrete Azure or Google Cloud client, only the
interfaces the stores use. There is no gRPC hook and no metrics collection.