"""Ethereum JSON-RPC access and ABI encoding for the ODF oracle contract."""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass
from typing import Any

import requests
from Crypto.Hash import keccak

SEND_REQUEST_SIGNATURE = "SendRequest(uint64,address,bytes)"
PROVIDE_RESULT_SIGNATURE = "ProvideResult(uint64,address,address,bytes,bool,bool,bytes)"
PROVIDE_RESULT_FUNCTION = "provideResult(uint64,bytes)"
CAN_PROVIDE_RESULTS_FUNCTION = "canProvideResults(address)"

_WORD = 32


class RpcError(Exception):
    """A JSON-RPC request failed or returned an error."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


def _keccak256(data: bytes) -> bytes:
    return keccak.new(digest_bits=256, data=data).digest()


def event_signature(signature: str) -> bytes:
    """Keccak-256 hash of a canonical event or function signature."""
    return _keccak256(signature.encode("ascii"))


SEND_REQUEST_TOPIC = event_signature(SEND_REQUEST_SIGNATURE)
PROVIDE_RESULT_TOPIC = event_signature(PROVIDE_RESULT_SIGNATURE)


@dataclass(frozen=True)
class SendRequestEvent:
    """Emitted when a client request was made and awaits a response."""

    request_id: int
    consumer_addr: str
    request: bytes


@dataclass(frozen=True)
class ProvideResultEvent:
    """Emitted when a provider fulfils a pending request."""

    request_id: int
    consumer_addr: str
    provider_addr: str
    response: bytes
    request_error: bool
    consumer_error: bool
    consumer_error_data: bytes


@dataclass(frozen=True)
class LogEntry:
    """A raw contract log with its position on the chain."""

    address: str
    topics: tuple[bytes, ...]
    data: bytes
    block_number: int | None = None
    block_hash: str | None = None
    transaction_hash: str | None = None
    transaction_index: int | None = None
    log_index: int | None = None
    removed: bool = False


@dataclass(frozen=True)
class Block:
    number: int
    timestamp: int
    hash: str | None = None


# ABI decoding


def _slice_word(data: bytes, offset: int) -> bytes:
    word = data[offset : offset + _WORD]
    if len(word) != _WORD:
        raise ValueError(f"ABI data truncated at offset {offset}")
    return word


def _decode_uint(word: bytes, bits: int) -> int:
    if len(word) != _WORD:
        raise ValueError("ABI word must be 32 bytes")
    value = int.from_bytes(word, "big")
    if value >> bits:
        raise ValueError(f"value does not fit in uint{bits}")
    return value


def _decode_address(word: bytes) -> str:
    if len(word) != _WORD or any(word[:12]):
        raise ValueError("invalid ABI-encoded address")
    return "0x" + word[12:].hex()


def _decode_bool(word: bytes) -> bool:
    value = _decode_uint(word, 8)
    if value > 1:
        raise ValueError(f"invalid ABI-encoded bool {value}")
    return bool(value)


def _decode_dynamic_bytes(data: bytes, head_offset: int) -> bytes:
    offset = int.from_bytes(_slice_word(data, head_offset), "big")
    length = int.from_bytes(_slice_word(data, offset), "big")
    start = offset + _WORD
    if start + length > len(data):
        raise ValueError("ABI dynamic bytes out of bounds")
    return data[start : start + length]


def _expect_topics(log: LogEntry, count: int) -> None:
    if len(log.topics) != count:
        raise ValueError(f"expected {count} topics, got {len(log.topics)}")


def decode_event(log: LogEntry) -> SendRequestEvent | ProvideResultEvent:
    """Decode an oracle event from a log, validating every field."""
    if not log.topics:
        raise ValueError("log has no topics")
    topic0 = log.topics[0]
    if topic0 == SEND_REQUEST_TOPIC:
        _expect_topics(log, 3)
        return SendRequestEvent(
            request_id=_decode_uint(log.topics[1], 64),
            consumer_addr=_decode_address(log.topics[2]),
            request=_decode_dynamic_bytes(log.data, 0),
        )
    if topic0 == PROVIDE_RESULT_TOPIC:
        _expect_topics(log, 4)
        return ProvideResultEvent(
            request_id=_decode_uint(log.topics[1], 64),
            consumer_addr=_decode_address(log.topics[2]),
            provider_addr=_decode_address(log.topics[3]),
            response=_decode_dynamic_bytes(log.data, 0),
            request_error=_decode_bool(_slice_word(log.data, _WORD)),
            consumer_error=_decode_bool(_slice_word(log.data, 2 * _WORD)),
            consumer_error_data=_decode_dynamic_bytes(log.data, 3 * _WORD),
        )
    raise ValueError(f"unknown event topic 0x{bytes(topic0).hex()}")


# ABI encoding


def _encode_uint(value: int, bits: int = 256) -> bytes:
    if not 0 <= value < 1 << bits:
        raise ValueError(f"{value} does not fit in uint{bits}")
    return value.to_bytes(_WORD, "big")


def _encode_address(address: str) -> bytes:
    body = address[2:] if address.lower().startswith("0x") else address
    raw = bytes.fromhex(body)
    if len(raw) != 20:
        raise ValueError(f"invalid address {address!r}")
    return raw.rjust(_WORD, b"\0")


def _encode_bytes_tail(data: bytes) -> bytes:
    return _encode_uint(len(data)) + data + b"\0" * (-len(data) % _WORD)


def _selector(signature: str) -> bytes:
    return event_signature(signature)[:4]


def encode_provide_result(request_id: int, result: bytes) -> bytes:
    """Calldata for ``provideResult(uint64 requestId, bytes result)``."""
    return (
        _selector(PROVIDE_RESULT_FUNCTION)
        + _encode_uint(request_id, 64)
        + _encode_uint(2 * _WORD)
        + _encode_bytes_tail(bytes(result))
    )


def encode_can_provide_results(address: str) -> bytes:
    """Calldata for ``canProvideResults(address addr)``."""
    return _selector(CAN_PROVIDE_RESULTS_FUNCTION) + _encode_address(address)


# JSON-RPC


def _quantity(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value[:2].lower() == "0x":
        try:
            return int(value, 16)
        except ValueError:
            pass
    raise RpcError(f"invalid quantity {value!r}")


def _optional_quantity(value: Any) -> int | None:
    return None if value is None else _quantity(value)


def _hex_bytes(value: Any) -> bytes:
    if not isinstance(value, str) or value[:2].lower() != "0x":
        raise RpcError(f"invalid hex data {value!r}")
    try:
        return bytes.fromhex(value[2:])
    except ValueError as exc:
        raise RpcError(f"invalid hex data {value!r}") from exc


def _hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def _topic_param(topic: Any) -> Any:
    if topic is None:
        return None
    if isinstance(topic, (list, tuple)):
        return [_hex(item) for item in topic]
    return _hex(topic)


def _log_from_rpc(raw: Any) -> LogEntry:
    if not isinstance(raw, dict):
        raise RpcError(f"invalid log entry {raw!r}")
    try:
        return LogEntry(
            address=raw["address"].lower(),
            topics=tuple(_hex_bytes(topic) for topic in raw.get("topics", [])),
            data=_hex_bytes(raw.get("data", "0x")),
            block_number=_optional_quantity(raw.get("blockNumber")),
            block_hash=raw.get("blockHash"),
            transaction_hash=raw.get("transactionHash"),
            transaction_index=_optional_quantity(raw.get("transactionIndex")),
            log_index=_optional_quantity(raw.get("logIndex")),
            removed=bool(raw.get("removed", False)),
        )
    except (KeyError, AttributeError) as exc:
        raise RpcError(f"invalid log entry {raw!r}") from exc


class JsonRpcChainClient:
    """Minimal Ethereum JSON-RPC client over HTTP."""

    _poll_interval = 1.0
    _request_timeout = 30.0

    def __init__(self, url: str, session: requests.Session | None = None) -> None:
        self.url = url
        self._session = session if session is not None else requests.Session()
        self._ids = itertools.count(1)

    def _request(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self._session.post(self.url, json=payload, timeout=self._request_timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise RpcError(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise RpcError(f"{method}: invalid JSON response") from exc

        if not isinstance(body, dict):
            raise RpcError(f"{method}: invalid response {body!r}")
        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RpcError(f"{method}: {error.get('message')}", error.get("code"))
            raise RpcError(f"{method}: {error}")
        if "result" not in body:
            raise RpcError(f"{method}: response has no result")
        return body["result"]

    def get_chain_id(self) -> int:
        return _quantity(self._request("eth_chainId", []))

    def get_block_number(self) -> int:
        return _quantity(self._request("eth_blockNumber", []))

    def get_block(self, number: int | None = None) -> Block | None:
        """Fetch a block by number, or the latest block; None if unknown."""
        tag = "latest" if number is None else hex(number)
        raw = self._request("eth_getBlockByNumber", [tag, False])
        if raw is None:
            return None
        if not isinstance(raw, dict) or "number" not in raw or "timestamp" not in raw:
            raise RpcError(f"invalid block {raw!r}")
        return Block(
            number=_quantity(raw["number"]),
            timestamp=_quantity(raw["timestamp"]),
            hash=raw.get("hash"),
        )

    def get_balance(self, address: str) -> int:
        return _quantity(self._request("eth_getBalance", [address, "latest"]))

    def get_logs(
        self, address: str, topics: list[Any], from_block: int, to_block: int
    ) -> list[LogEntry]:
        """Fetch logs; each topic position is bytes, a list of alternatives or None."""
        log_filter = {
            "address": address,
            "topics": [_topic_param(topic) for topic in topics],
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
        }
        raw = self._request("eth_getLogs", [log_filter])
        if not isinstance(raw, list):
            raise RpcError(f"eth_getLogs: expected a list, got {raw!r}")
        return [_log_from_rpc(item) for item in raw]

    def call(self, to: str, data: bytes, sender: str | None = None) -> bytes:
        tx: dict[str, Any] = {"to": to, "data": _hex(data)}
        if sender is not None:
            tx["from"] = sender
        return _hex_bytes(self._request("eth_call", [tx, "latest"]))

    def send_transaction(self, to: str, data: bytes, sender: str) -> str:
        """Submit a transaction signed by the node; return its hash."""
        result = self._request(
            "eth_sendTransaction", [{"from": sender, "to": to, "data": _hex(data)}]
        )
        if not isinstance(result, str):
            raise RpcError(f"eth_sendTransaction: invalid hash {result!r}")
        return result

    def wait_for_receipt(
        self, tx_hash: str, confirmations: int = 1, timeout: float | None = None
    ) -> dict[str, Any]:
        """Poll until the transaction has the required confirmations.

        Raises TimeoutError if that does not happen within ``timeout`` seconds.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            receipt = self._request("eth_getTransactionReceipt", [tx_hash])
            if isinstance(receipt, dict) and receipt.get("blockNumber") is not None:
                mined = _quantity(receipt["blockNumber"])
                if confirmations <= 1 or self.get_block_number() - mined + 1 >= confirmations:
                    return receipt
            now = time.monotonic()
            if deadline is not None and now >= deadline:
                raise TimeoutError(
                    f"transaction {tx_hash} not confirmed within {timeout} seconds"
                )
            pause = self._poll_interval
            if deadline is not None:
                pause = min(pause, deadline - now)
            time.sleep(max(pause, 0.0))