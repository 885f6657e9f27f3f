# k0sinttest

Helpers for writing integration tests against Kubernetes clusters: waiting on
resources through a list-then-watch loop, cancellable contexts, reading
manifests and finding control-plane containers in Docker.

## Installation

```
pip install k0sinttest
```

The `test` extra pulls in pytest for the package's own tests.

## Modules

### `k0sinttest.context`

Cancellable contexts that form a tree. Cancelling a context cancels every
context derived from it.

- `background()` returns a root context that never ends by itself.
- `Context.with_cancel()`, `Context.with_deadline(deadline)` and
  `Context.with_value(value, key=None)` derive child contexts. Deadlines are
  `time.monotonic()` timestamps; a value is stored under its type unless a key
  is given.
- `Context.cancel(cause=None)`, `done()`, `err()`, `cause()`, `wait(timeout)`
  and `lookup(key)`. `err()` is a `ContextCanceled` or `DeadlineExceeded` once
  the context has ended.
- `value(ctx, key)` returns the stored value or `None`;
  `value_or_else(ctx, key, fallback)` calls `fallback` instead.
- `new_suite_context(deadline=None)` returns a context and its cancel function.
  With a deadline, the context ends early enough to keep 10% of the remaining
  time, and never less than 20 seconds, free for teardown.
- `signal_aware_context(parent)` returns a child that is cancelled on SIGINT or
  SIGTERM. Once it has ended, further signals go to the handlers that were in
  place before. Handlers can only be installed from the main thread.

### `k0sinttest.apierrors`

API status errors: `StatusReason`, `Status`, `StatusError` and
`UnexpectedObjectError`, with the constructors `new_timeout_error()`,
`new_resource_expired()`, `new_bad_request()` and `new_too_many_requests()`.
`from_object()` turns a received object into an error. `reason_for_error()`,
`is_resource_expired()` and `suggests_client_delay()` inspect an error and the
chain of its causes.

### `k0sinttest.watcher`

`Watcher.until(ctx, condition)` lists the matching resources once, then watches
them from the listed resource version until `condition` returns `True`.

- When the server closes a watch, it is resumed from the last seen resource
  version; bookmarks move that version forward.
- When a resource version has expired, the resources are listed again.
- Other errors go to the callback set with `with_error_callback()`. It returns
  the delay in seconds before retrying, or raises to end the watch. Without a
  callback, any error ends the watch.
- An exception raised by the condition ends the watch at once.
- `with_object_name()` and `with_field_selector()` narrow what is matched.

A provider has `list(ctx, opts)` and `watch(ctx, opts)` methods, both taking a
`ListOptions`. The list result carries a `resource_version` attribute (or is a
mapping with `metadata.resourceVersion`) and holds its items in `items`. The
watch result has `result_chan()`, returning a `queue.Queue` of `Event`, where
`None` means the server closed the watch, and `stop()`. If the provider has an
`item_type` attribute, watch events carrying other objects are rejected.

`from_provider()`, `from_client()`, `deployments()`, `stateful_sets()`,
`daemon_sets()` and `nodes()` build watchers. `is_retryable(err)` returns the
server-suggested delay for throttling, timeout and unavailability errors, or
`None`.

### `k0sinttest.k0sutil`

- `poll(ctx, condition)` calls `condition(ctx)` at once and then every tenth
  of a second until it returns `True`, raises, or the context ends.
- `LineWriter(write_line)` buffers bytes passed to `write()` and hands each
  complete line, without its newline, to `write_line`; `flush()` hands over
  what is left.
- `logf_from(ctx)` returns the logging function stored under `LOGF_KEY`, else
  the `info` method of a logger stored under `logging.Logger`, else the
  module's logger.
- `retry_watch_errors(logf)` is an error callback that retries errors
  `is_retryable()` accepts after their delay, and connection reset, connection
  refused and EOF errors after one second; it logs each retry and raises any
  other error again.
- `wait_for_node_ready_status(ctx, client, node_name, status)`,
  `wait_for_deployment(ctx, client, name)` and
  `wait_for_stateful_set(ctx, client, name)` wait on resources given as
  mappings in their API form.

### `k0sinttest.manifests`

`parse_manifests(data)` splits YAML or JSON documents into resources that have
both `apiVersion` and `kind`; `read_manifests(filename)` does the same for a
file.

### `k0sinttest.hosts`

`get_host(value)` returns the `host:port` part of a URL, or the value itself
when it is a bare address.

### `k0sinttest.docker`

`get_control_plane_nodes_ids(prefix)` runs `docker ps` and returns the IDs of
containers whose line mentions `prefix`, leaving out load balancer (`-lb`) and
worker containers.

## Example

```python
from k0sinttest import context, watcher

ctx = context.background().with_cancel()

def is_ready(deployment):
    return deployment.get("status", {}).get("readyReplicas", 0) > 0

watcher.deployments(client).with_object_name("frpc").until(ctx, is_ready)
```

## What it does not do

The package has no Kubernetes client of its own: the watcher and the waiters
work with any object that offers the provider methods described above. It does
not create or apply manifests on a cluster, install operators, fetch
kubeconfigs, run commands in pods or forward ports; `parse_manifests()` only
reads documents and `get_host()` only extracts an address.