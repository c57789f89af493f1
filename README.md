# buildshim

Building blocks for a build-proxy service that talks to its client over one
bidirectional message stream. It has two parts: a chunked read-ahead
prefetcher for slow random-access readers, and a pipeline that splits one
packet stream into independent request/reply stages.

The package has no runtime dependencies.

## Prefetching

`buildshim.prefetch.Prefetcher` wraps any object with a
`read_at(length, offset) -> bytes` method. That method returns up to `length`
bytes and returns fewer at the end of the data. It may also raise `EOFError`,
which counts as no data. The prefetcher reads whole chunks and schedules the
chunks that follow the requested range, up to the window size, in the
background. Chunks are kept in a `buildshim.cache.ChunkCache`, and chunks
below the start of the current read are dropped. At most
`max_parallel_reads` underlying reads run at once, and a failed read is
retried.

```python
from buildshim.prefetch import Config, Prefetcher


class BytesReader:
    def __init__(self, data: bytes) -> None:
        self.data = data

    def read_at(self, length: int, offset: int) -> bytes:
        return self.data[offset : offset + length]


reader = BytesReader(bytes(range(256)) * 1024)
with Prefetcher(reader, len(reader.data), Config(chunk_size=4096, window_size=16384)) as pf:
    result = pf.read_at(1024, 2048)
    print(len(result), result.eof)
```

`read_at(length, offset)` returns a `ReadResult` with the fields `data` and
`eof`. `eof` is true when the read reaches the end of a known size. Pass a
negative `size` when the size is not known. A size of `0` makes every
non-empty read return empty data with `eof` set.

`Config` fields and their defaults:

| field                | default      | meaning                                        |
|----------------------|--------------|------------------------------------------------|
| `window_size`        | `1 << 20`    | bytes to read ahead; raised to at least one chunk |
| `chunk_size`         | `1 << 16`    | size of each underlying read                   |
| `max_parallel_reads` | `4`          | concurrent underlying reads                    |
| `read_timeout`       | `None`       | seconds per read; `None` means no limit        |
| `retry_interval`     | `0.5`        | seconds between retries                        |
| `max_retries`        | `3`          | retries after the first attempt                |

A field that is zero or negative falls back to its default. For
`max_retries`, only a negative value does.

Errors all derive from `PrefetchError`:

- `OffsetOutOfRangeError`: the offset is negative, or at or past the end.
- `ReadFailedError`: the underlying read failed after all retries, or it
  timed out.
- `PrefetcherClosedError`: the prefetcher was used after `close()`, or it was
  closed while a read was waiting.

`ChunkCache` can also be used on its own. It provides `add_chunk`,
`get_chunk` (which marks the chunk as recently used), `has_chunk`,
`remove_chunk`, `evict_before`, `find_overlapping_chunks(start, end)`,
`indices()`, `clear()`, `len()` and `in`. Once the cache holds more than
`max_cache_size` chunks (1024 by default), it evicts the `evict_count`
least recently used ones.

## Stream pipeline

- `buildshim.messages`: the packet types. `ClientStream` and `ServerStream`
  each carry a `build_id` and at most one payload: `ImageTransfer`,
  `BuildTransfer`, `Command` or (server side only) `IO`.
- `buildshim.context`: `Context` is a cancellation flag shared between
  threads. Call `child()` to get a context that is cancelled along with its
  parent. `raise_if_cancelled()` raises `Cancelled`.
- `buildshim.filters`: a filter is a callable that returns when it accepts a
  packet and raises `IgnorePacket` when it does not. The module provides
  `filter_by_build_id`, `filter_by_image_transfer_id`,
  `filter_by_build_transfer_id`, `filter_by_command_id`, `filter_allow_all`,
  `filter_chain` (the first filter that raises stops the chain) and
  `FunctionFilter`.
- `buildshim.demux`: `Demultiplexer` queues the packets that answer one
  request id.
- `buildshim.stage`: `BaseStage` is the base of every stage.
  `request(ctx, packet, request_id, filter_factory)` sends a packet and
  blocks until the reply with that id arrives. `send` raises
  `SendStreamBlocked` if the send queue stays full for `send_timeout`
  seconds. Subclasses override `filter` to claim the packets they handle.
- `buildshim.pipeline`: `StreamPipeline(ctx, raw, *stages)` starts each
  stage's run loop. `run()` forwards packets between `raw` and the stages.
  `raw` must provide `recv()` and `send(packet)`, and `recv()` raises
  `EOFError` when the peer is done. `run()` returns once the pipeline's
  context is cancelled and `raw.recv()` has ended.
- `buildshim.errors`: `StreamError` and its subclasses `IgnorePacket`,
  `RecvStreamClosed`, `NoHandlerFound`, `NotATTY`, `SendStreamBlocked` and
  `UninitializedStageError`.

### Stages provided

- `buildshim.stdio.StdioProxy(ctx, tty)`: a write-only stage.
  - `write(data)` sends the bytes as a stderr `IO` packet and waits for the
    reply. `read()` raises `WriteOnlyStreamError`.
  - It accepts terminal commands: base64 JSON (unpadded) that decodes to a
    `TerminalCommand`. It accepts `"ack"` commands.
  - A `"winch"` command resizes the pseudo-terminal that is opened when `tty`
    is true, and raises `NotATTY` when there is none. The `tty` option is
    POSIX only.
- `buildshim.resolver.ResolverProxy`: `resolve_image_config(ctx, ref,
  platform)` asks the client to resolve an image reference. It returns
  `(ref, digest, config_bytes)`.
  - It raises `ReferenceError` when the reference has no tag or digest.
  - It raises `ResolveError` when the client reports an error.
  - `parse_reference`, `Reference` and `Platform` are available on their own.

## What this package does not do

It has no network server, transport or command-line program. You supply
something that implements `recv()`/`send()` and drive `StreamPipeline`
yourself. It does not run builds; it only provides the stages that proxy
output and image resolution to the client.

## Install

```
pip install .
```

With test dependencies:

```
pip install .[test]
```

## Running the tests

```
pytest
```