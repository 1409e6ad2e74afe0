# kamu-node

An oracle provider for Ethereum-compatible chains. It watches an oracle
contract for `SendRequest` events. It runs the SQL query each request carries
against an ODF-compatible API server. Then it writes the result back to the
contract with `provideResult`, as a CBOR-encoded response.

The package also holds a small release helper for a Cargo workspace.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Running the oracle provider

```
kamu-oracle-provider --config config.yaml run
```

`--config` defaults to `config.yaml`. If you give no arguments, the command
prints its help and exits.

### Configuration

Settings come from a file and from the environment. The file may be YAML
(`.yaml`, `.yml`), TOML (`.toml`) or JSON (`.json`), and a missing file is
skipped. An environment variable named after a key in upper case overrides the
file value. For example, `CHAIN_ID=31337` overrides `chain_id`.

A minimal configuration:

```yaml
rpc_url: http://localhost:8545
chain_id: 31337
oracle_contract_address: "0x0000000000000000000000000000000000000001"
provider_address: "0x0000000000000000000000000000000000000002"
provider_private_key: placeholder
transaction_confirmations: 1
scan_from_block: 0
api_url: http://localhost:8080
```

These keys are required: `oracle_contract_address`, `provider_address`,
`provider_private_key` and `transaction_confirmations`. The other keys are
optional:

| Key | Default | Meaning |
| --- | --- | --- |
| `http_address` | `127.0.0.1` | Interface for the admin HTTP endpoints |
| `http_port` | `0` | Port for the admin HTTP endpoints (0 picks a free port) |
| `rpc_url` | `http://localhost:8545` | JSON-RPC endpoint of the chain |
| `chain_id` | `0` | Expected chain ID; startup fails if the node reports another |
| `scan_from_block` | – | Block to start scanning from |
| `scan_last_blocks` | – | Scan this many recent blocks on startup |
| `scan_last_blocks_period` | – | Scan blocks from this period, e.g. `2h`, `1d 12h` (units `ms s m h d w y`) |
| `blocks_stride` | `100000` | Blocks examined per `eth_getLogs` request |
| `loop_idle_time_ms` | `1000` | Sleep while waiting for new blocks |
| `transaction_timeout_s` | `60` | Time to wait for a transaction receipt |
| `api_url` | `http://localhost:8080` | ODF API server; queries go to `<api_url>/query` |
| `api_access_token` | – | Sent as a bearer token to the API server |
| `ignore_requests` | `[]` | Request IDs to skip |
| `ignore_consumers` | `[]` | Consumer addresses whose requests are skipped |

The starting block comes from the first of these options that is set:
`scan_from_block`, `scan_last_blocks`, `scan_last_blocks_period`. The period
option estimates a block number from the block rate over the last 1000 blocks.

### Behaviour

Before it starts scanning, the provider waits for two things. The oracle
contract must report `canProvideResults` for its address, and its wallet must
hold a non-zero balance. It then does the following for each new block range:

- It collects the requests that have no `ProvideResult` yet.
- It queries the API server with the DataFusion dialect and the `JsonAoa` format.
- It submits a result for each request.

A `400` reply is reported on chain as an error result. Requests that get a
`404` (unknown dataset) are skipped.

The admin HTTP server answers these endpoints:

- `GET /system/health` returns `{"ok": true}`.
- `GET /system/metrics` returns Prometheus text. It carries the metrics
  `kamu_oracle_provider_wallet_balance_wei`,
  `kamu_oracle_provider_api_queries_total` and
  `kamu_oracle_provider_transactions_submitted_total`.

The provider stops cleanly on SIGINT or SIGTERM. The log level is read from
`KAMU_LOG_LEVEL` and defaults to `DEBUG`.

### What it does not do

- It does not sign transactions itself. Results are submitted with
  `eth_sendTransaction` from `provider_address`, so the RPC node must hold that
  account unlocked. `provider_private_key` is read and checked for presence but
  not used.
- It does not handle chain reorganisations. A removed log stops processing
  with an error.
- It does not contain an ODF API server. It only talks to one over HTTP.
  `kamu_node.ui_configuration` holds the `UIConfiguration` and
  `UIFeatureFlags` settings models, serialisable with `to_json()`, but nothing
  in the package serves them.

### Using it as a library

```python
from kamu_node.config import load_config
from kamu_node.app import init_rpc_client, init_api_client
from kamu_node.provider import OdfOracleProvider, OdfOracleProviderMetrics

config = load_config("config.yaml", {})
provider = OdfOracleProvider(
    config,
    init_rpc_client(config),
    init_api_client(config),
    OdfOracleProviderMetrics(config.chain_id, "localhost"),
)
provider.run_once(0, None)
```

Other useful modules:

- `kamu_node.codec.decode_request(request_id, payload)` parses the CBOR request
  layout `[1, "ds", alias, did_bytes, ..., "sql", query]`. It raises
  `RequestDecodeError` on malformed input.
- `kamu_node.codec.OdfResult.encode()` produces the response layout the
  contract expects.
- `kamu_node.api_client.OdfApiClientRest` is a REST client for the ODF query
  API. It raises `BadRequestError`, `DatasetNotFoundError` or `ApiRequestError`
  when a query fails.
- `kamu_node.ethereum.JsonRpcChainClient` is a minimal JSON-RPC client. The
  module also holds `decode_event` and the ABI encoders for the oracle
  contract.
- `kamu_node.identifiers` provides `DatasetID` (`did:odf:` identifiers) and
  `Multihash`.

## Release helper

Run this from the root of a Cargo workspace:

```
kamu-release --minor
kamu-release --patch
kamu-release --version 1.2.3
```

`--version` takes precedence and accepts a leading `v`. It is followed by
`--minor`, then `--patch`. With none of them given, the command fails.

The helper does the following:

- It reads the current version from `workspace.package.version` in
  `Cargo.toml`.
- It runs `cargo set-version --workspace <version>`, which needs `cargo-edit`.
- It rewrites the licensed-work version in `LICENSE.txt`. On a major or minor
  bump, it also sets the change date to four years from today.
- It updates the first `"version"` field in `resources/openapi.json` and in
  `resources/openapi-mt.json`.

If any of these files is left unchanged, the helper fails.