# sharddoc

Building blocks for distributed work on a replicated SQL store:

- `sharddoc.tcc` – a Try-Confirm-Cancel (TCC) transaction coordinator.
- `sharddoc.example` – a reference TCC component over a key-value client
  and a transaction log kept in an SQLite table.
- `sharddoc.tcp` – the length-prefixed TCP protocol spoken between clients
  and cluster nodes, with a service, a client and node configuration.

The only third-party dependency is PyYAML, used to read node configuration.

## TCC transactions

A transaction spans several components. Each component subclasses
`TccComponent` from `sharddoc.tcc.component` and provides:

- `component_id` – a property holding a unique identifier,
- `try_(request)` – the first phase, given a `TCCRequest`
  (`component_id`, `tx_id`, `data`),
- `confirm(tx_id)` and `cancel(tx_id)` – the second phase,

each returning a `TCCResponse` whose `ack` tells whether the step was
accepted.

The coordinator, `TXManager` in `sharddoc.tcc.txmanager`, needs a `TXStore`
that keeps the transaction log: `create_tx`, `tx_update`, `tx_submit`,
`get_hanging_txs`, `get_tx`, `lock` and `unlock`.

```python
from sharddoc.tcc.models import Options, RequestEntity
from sharddoc.tcc.txmanager import TXManager

with TXManager(store, Options(timeout=5, monitor_tick=1)) as manager:
    manager.register(component_a)
    manager.register(component_b)
    tx_id, successful = manager.transaction(
        RequestEntity("componentA", {"biz_id": "componentA_biz"}),
        RequestEntity("componentB", {"biz_id": "componentB_biz"}),
    )
```

- All tries run concurrently. When every try is acknowledged the
  components are confirmed, otherwise they are cancelled, and the final
  state is submitted to the store.
- `transaction` returns the transaction id and whether every try
  succeeded. An empty request list, a component named twice, or an
  unregistered component raises `TCCError`; if the store cannot create the
  record the result is `("", False)`.
- Registering the same component id twice raises `TCCError`.
- A background thread periodically takes the store's lock, fetches the
  hanging transactions and advances them with `advance_progress`, doubling
  its interval up to eight monitor ticks while all goes well. It stops with
  `stop()` or when the `with` block ends.
- `Transaction.resolve_status` derives the state: any failed try, or a
  still-hanging try on a transaction older than the timeout, fails it.
- `Options` takes `timeout` and `monitor_tick` in seconds; values that are
  not positive fall back to 5 and 10 seconds.

Unless a `logger` is passed to `TXManager`, errors are written through
`sharddoc.tcc.tcclog.get_default_logger()`, a rotating file logger writing
to `app.log` in the working directory. `new_logger(LogOptions(...))` builds
one with another file name, level, size limit, backup count, maximum age and
gzip compression.

## Reference implementation

`sharddoc.example` shows the pieces wired together:

- `KVComponent` (`sharddoc.example.kvcomponent`) freezes the request's
  `biz_id` on try, marks it successful on confirm and deletes the frozen
  record on cancel. Every phase is idempotent per transaction and runs under
  a `DistributedLock` kept as an expiring key in a `KVClient`.
  `MemoryKVClient` is a thread-safe in-process `KVClient`.
- Key names come from `sharddoc.example.keys`: `build_tx_key`,
  `build_tx_detail_key`, `build_data_key`, `build_tx_lock_key` and
  `build_tx_record_lock_key`.
- `TXRecordDAO` (`sharddoc.example.dao`) keeps `TXRecord` rows in an
  `sqlite3` connection, with the per-component try statuses stored as JSON.
  Queries filter with `with_id` and `with_status`; `lock_and_do` runs a
  callback inside a write transaction.
- `RecordTXStore` (`sharddoc.example.recordstore`) is a `TXStore` over that
  DAO, taking its log lock through a `KVClient`.

```python
import sqlite3

from sharddoc.example.dao import TXRecordDAO
from sharddoc.example.kvcomponent import KVComponent, MemoryKVClient
from sharddoc.example.recordstore import RecordTXStore

kv = MemoryKVClient()
dao = TXRecordDAO(sqlite3.connect("tx.db", check_same_thread=False))
store = RecordTXStore(dao, kv)
component_a = KVComponent("componentA", kv)
```

## TCP protocol

Every frame is one type byte, a 4-byte big-endian body length and the body.
Request bodies are a JSON-encoded `RaftRequest` (`RequestID`, `DataType`,
`Payload`). `MessageType` lists the request kinds (`EXEC`, `JOIN`,
`STATUS`, `SHOW_TABLES`) and the reply types (`OK_RESP`, `BAD_RESP`).

In `sharddoc.tcp.protocol`, `build_tcp_info` encodes a request, assigning a
fresh id when it has none and checking required payload fields (`sql` for
exec; `node_id` and `addr` for join); `read_request`, `read_response`,
`send_response` and `send_bad_response` read and write frames. Malformed
input raises `ProtocolError`; a closed connection raises `EOFError`.

### Client

```python
from sharddoc.tcp.client import Client

with Client.open("127.0.0.1:29001") as client:
    client.exec("CREATE TABLE users (id INT64, name BYTES, PRIMARY KEY (id));")
    rows = client.raw("SELECT name, id FROM users WHERE id >= 0")
```

`exec` returns the reply text; `raw` returns the records of a query as
decoded JSON objects. An error reply is raised as `ProtocolError`.

### Service

`Service` in `sharddoc.tcp.server` reads frames from a connection and passes
them to a `RaftNode` (`exec`, `join`, `status`, `tables`), answering each
with one reply. `listen_and_serve` accepts connections on a listening socket
until an event is set; `listen_and_serve_with_signal` binds an address and
serves until a hangup, quit, terminate or interrupt signal. `join` asks a
running node to add a member to its cluster.

`load_node_config` reads a node's YAML settings into a `NodeConfig`;
relative `raft_dir` and `db_path` entries are resolved against the file's
directory, and durations such as `snapshot_interval: 3m` are converted to
seconds by `parse_duration`. `StoreStatus` and `Node` describe the cluster
as seen from one node.

## What this package does not do

- It has no raft consensus and no SQL storage engine. `RaftNode` is an
  abstract interface: to serve requests you supply an implementation that
  replicates and applies statements.
- It installs no command. Starting a node means building a `Service` over
  your own `RaftNode` and calling `listen_and_serve_with_signal`.
- The only `KVClient` provided lives in process memory; a shared store for
  several processes must be supplied by implementing `KVClient`.