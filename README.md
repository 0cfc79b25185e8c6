# layotto

The core of an application runtime as a Python library, plus a client SDK for such a runtime. It uses only the standard library.

## What it contains

### Runtime configuration

`layotto.config.parse_runtime_config(data)` reads the runtime document and returns a `RuntimeConfig`. The input can be JSON text or bytes, or a mapping that is already decoded.

The `RuntimeConfig` holds these sections:

| Section | Contents |
|---|---|
| `app` | an `AppConfig` with `app_id` and `grpc_callback_port` |
| `pub_subs`, `state`, `lock` | name → `ComponentConfig`, each holding a `metadata` dict of strings |
| `hellos`, `config_stores`, `rpcs` | name → the raw decoded value |

A field of the wrong type raises `ValueError`, and so does malformed JSON.

### Component registries

`layotto.registry.ComponentRegistry(service_name, info=None)` stores `Factory(name, factory_method)` objects.

- `register(*factories)` adds factories. A later factory replaces an earlier one with the same name.
- `create(name)` calls the factory's method and returns what it built.
- An unknown name raises `ComponentNotRegisteredError`, which is a `LookupError`.
- If you pass an `info` object, the registry tells it about the service and about each component that is registered or loaded. It calls `add_service`, `register_component` and `load_component` on it.

### Key-prefix strategies

`layotto.keyprefix` adds prefixes to state and lock keys. The separator is `||`.

A store's `keyPrefix` metadata picks the strategy:

- `appid` (the default). If the app id is empty, the key is left as it is.
- `name`, which uses the store name as the prefix.
- `none`, which adds no prefix.
- Any other value, which is used as a fixed prefix.

```python
from layotto.keyprefix import (
    save_state_configuration, get_modified_state_key, get_original_state_key,
)

save_state_configuration("store", {"keyPrefix": "name"})
key = get_modified_state_key("k1", "store", "app")   # "store||k1"
get_original_state_key(key)                          # "k1"
```

The lock functions work the same way: `save_lock_configuration` and `get_modified_lock_key`. `KeyPrefixConfig` is the class behind both sets of functions, and you can use it on its own.

If a key or prefix contains `||`, these functions raise `IllegalKeyError`, which is a `ValueError`.

`state_consistency_to_string` and `state_concurrency_to_string` give the names of these values:

- consistency: `eventual` or `strong`
- concurrency: `first-write` or `last-write`
- any other value: `""`

### The runtime

`layotto.runtime.MosnRuntime(runtime_config, info=None, app_callback=None, dialer=None)` is the runtime object.

Use the option functions in `layotto.options` to pass it factories and hooks:

- `with_pubsub_factory`, `with_state_factory`, `with_lock_factory`
- `with_hello_factory`, `with_config_stores_factory`, `with_rpc_factory`
- `with_err_interceptor`. Setting it twice raises `RuntimeError`.
- `with_new_server`, `with_grpc_options`

`run(*options)` does the following:

1. It creates every configured component and calls `init` on each one.
2. For pub/sub components, it fills in an empty `consumerID` with the app id.
3. It records the key-prefix strategy of each state and lock store.
4. It subscribes the pub/sub components to the topics the app asks for. It gets these from `app_callback.list_topic_subscriptions()`.
5. If a server maker was given, it calls it with the runtime and the server options, and returns the result.

`publish_message(message)` delivers a message to the app:

- It decodes the message as a JSON cloud event.
- It drops the event if it has expired.
- It builds a `TopicEventRequest` (see `to_topic_event_request`) and passes it to `app_callback.on_topic_event`.
- `retry_strategy` then reads the outcome:
  - A `RETRY` status, an unknown status or an error from the app raises `RedeliveryError`.
  - `SUCCESS`, `DROP` and `AppUnimplementedError` return normally.

### WASM filter support

- `layotto.wasm.config.parse_filter_config(cfg)` validates a filter configuration and returns a `FilterConfig`.
  - If the configuration names a plugin (`from_wasm_plugin`), the vm settings are cleared.
  - Otherwise a `vm_config` is required. `instance_num` defaults to the CPU count.
  - The top-level string entries become `user_data`.
- `layotto.wasm.imports.LayottoHandler(api)` answers a plugin's host calls:
  - `log(level, msg)` writes the message to the Python log and returns `WasmResult.OK`.
  - `call_foreign_function("SayHello", param)` accepts a request in protobuf wire form or in JSON. It calls `api.say_hello` and returns `(bytes, WasmResult)`.
  - Any other function name returns an empty OK result.

### Client SDK

`layotto.sdk.client.new_client_with_connection(connection)` returns a `Client`. The client is also a context manager, and `close()` closes the connection.

The connection must offer the runtime's calls. Each call takes a plain dict keyed by wire field names and returns one. The client provides:

- State: `save_state`, `save_bulk_state`, `get_state`, `get_state_with_consistency`, `get_bulk_state`, `delete_state`, `delete_state_with_etag`, `delete_bulk_state`, `delete_bulk_state_items`, `execute_state_transaction`. The types and helpers for these are in `layotto.sdk.state`.
- Configuration: `get_configuration`, `save_configuration`, `delete_configuration`, and `subscribe_configuration`. The last one yields `WatchResponse` objects. The final one carries the error that ended the stream, which is `EOFError` when the server closed it.
- `say_hello`, `publish_event`, `try_lock`, `unlock`.

## What it does not do

- There is no network transport. The runtime does not open a gRPC server or dial the app by itself. You supply the app callback client (or a `dialer`) and any server maker.
- The client talks only through the connection object you give it.
- No component implementations are included: no pub/sub brokers, state or lock stores, hello services, configuration stores or rpc invokers. You register your own factories.
- There is no wasm virtual machine. Only the filter configuration and the host-call handler are provided.
- There is no command-line program.

## Install

```
pip install .
```

To install the test dependencies too, and run the tests:

```
pip install .[test]
pytest
```