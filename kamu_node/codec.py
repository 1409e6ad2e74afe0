"""CBOR wire format of oracle requests and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import cbor2

from kamu_node import cbor
from kamu_node.identifiers import DatasetID, Multihash

REQUEST_VERSION = 1
RESULT_VERSION = 1


class RequestDecodeError(ValueError):
    """An on-chain request payload is malformed."""


@dataclass
class OdfRequest:
    """A decoded query request sent to the oracle."""

    id: int
    sql: str
    aliases: list[tuple[str, DatasetID]] = field(default_factory=list)


@dataclass
class OdfResultOk:
    """Query data and the dataset states it was computed from."""

    data: Any
    state: list[tuple[DatasetID, Multihash]] = field(default_factory=list)


@dataclass
class OdfResultErr:
    """An unrecoverable error to report instead of data."""

    error_message: str


@dataclass
class OdfResult:
    """Response to a single oracle request."""

    request_id: int
    inner: OdfResultOk | OdfResultErr

    def to_cbor(self) -> list[Any]:
        """Lay the result out as the CBOR array the oracle contract expects."""
        if isinstance(self.inner, OdfResultOk):
            state = [
                part
                for dataset_id, block_hash in self.inner.state
                for part in (dataset_id.as_bytes(), block_hash.as_bytes())
            ]
            return [RESULT_VERSION, True, cbor.json_to_cbor(self.inner.data), b"", state]
        return [RESULT_VERSION, False, self.inner.error_message]

    def encode(self) -> bytes:
        return cbor.encode(self.to_cbor())


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def decode_request(request_id: int, payload: bytes) -> OdfRequest:
    """Decode a request payload.

    The layout is ``[version, "ds", alias, did_bytes, ..., "sql", query]``.
    """
    try:
        raw = cbor2.loads(bytes(payload))
    except (ValueError, EOFError) as exc:
        raise RequestDecodeError(f"Malformed CBOR request: {exc}") from exc

    if not isinstance(raw, list):
        raise RequestDecodeError("Request must be a CBOR array")

    items = iter(raw)
    version = next(items, None)
    if not _is_int(version):
        raise RequestDecodeError("Request does not start with version specifier")
    if version != REQUEST_VERSION:
        raise RequestDecodeError(f"Unsupported protocol version {version}")

    sql: str | None = None
    aliases: list[tuple[str, DatasetID]] = []

    for key in items:
        if not isinstance(key, str):
            raise RequestDecodeError("Expected a key")
        if key == "ds":
            alias = next(items, None)
            if not isinstance(alias, str):
                raise RequestDecodeError("Expected an alias")
            did = next(items, None)
            if not isinstance(did, (bytes, bytearray)):
                raise RequestDecodeError("Expected a dataset ID")
            try:
                dataset_id = DatasetID.from_bytes(bytes(did))
            except ValueError as exc:
                raise RequestDecodeError("Expected DID bytes") from exc
            aliases.append((alias, dataset_id))
        elif key == "sql":
            query = next(items, None)
            if not isinstance(query, str):
                raise RequestDecodeError("Expected a query")
            sql = query
        else:
            raise RequestDecodeError(f"Unknown key {key}")

    if sql is None:
        raise RequestDecodeError("Request does not specify a query")

    return OdfRequest(id=request_id, sql=sql, aliases=aliases)