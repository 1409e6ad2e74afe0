"""Oracle provider: scans the chain for query requests and submits results."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from kamu_node.api_client import (
    BadRequestError,
    DataFormat,
    DatasetNotFoundError,
    DatasetState,
    Include,
    OdfApiClient,
    QueryDialect,
    QueryRequest,
)
from kamu_node.codec import OdfRequest, OdfResult, OdfResultErr, OdfResultOk, decode_request
from kamu_node.config import Config
from kamu_node.ethereum import (
    PROVIDE_RESULT_TOPIC,
    SEND_REQUEST_TOPIC,
    ProvideResultEvent,
    SendRequestEvent,
    decode_event,
    encode_can_provide_results,
    encode_provide_result,
)

_log = logging.getLogger(__name__)

METRICS_NAMESPACE = "kamu_oracle_provider"
_JUMP_BACK = 1_000


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _render_metric(kind: str, name: str, help_text: str, labels: dict[str, str], value: Any) -> list[str]:
    full_name = f"{METRICS_NAMESPACE}_{name}"
    label_text = ""
    if labels:
        label_text = "{" + ",".join(f'{k}="{_escape_label(v)}"' for k, v in labels.items()) + "}"
    return [
        f"# HELP {full_name} {help_text}",
        f"# TYPE {full_name} {kind}",
        f"{full_name}{label_text} {value}",
    ]


@dataclass
class Counter:
    """Monotonically increasing integer metric."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def inc(self) -> None:
        with self._lock:
            self.value += 1

    def _render(self) -> list[str]:
        return _render_metric("counter", self.name, self.help, self.labels, self.value)


@dataclass
class Gauge:
    """Metric holding an arbitrary floating-point value."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = float(value)

    def _render(self) -> list[str]:
        return _render_metric("gauge", self.name, self.help, self.labels, repr(self.value))


class OdfOracleProviderMetrics:
    """Metrics reported by the provider."""

    def __init__(self, chain_id: int, node_host: str) -> None:
        chain_label = {"chain_id": str(chain_id)}
        self.wallet_balance = Gauge(
            "wallet_balance_wei", "Balance of the provider's wallet", dict(chain_label)
        )
        self.api_queries_num = Counter(
            "api_queries_total",
            "ODF API queries executed",
            {**chain_label, "node_host": node_host},
        )
        self.transactions_num = Counter(
            "transactions_submitted_total", "Chain transactions submitted", dict(chain_label)
        )

    def render(self) -> str:
        """Render all metrics in the Prometheus text exposition format."""
        lines: list[str] = []
        for metric in (self.wallet_balance, self.api_queries_num, self.transactions_num):
            lines.extend(metric._render())
        return "\n".join(lines) + "\n"


class ProviderUnauthorized(Exception):
    """Provider is not authorized to provide results to the oracle contract."""

    def __init__(self) -> None:
        super().__init__("Provider is not authorized to provide results to the oracle contract")


class OdfOracleProvider:
    """Fulfils ODF oracle requests by querying an ODF node."""

    _auth_poll_interval = 5.0

    def __init__(
        self,
        config: Config,
        rpc_client: Any,
        api_client: OdfApiClient,
        metrics: OdfOracleProviderMetrics,
    ) -> None:
        self.config = config
        self.rpc_client = rpc_client
        self.api_client = api_client
        self.metrics = metrics

    def is_authorized(self) -> bool:
        """Check whether the provider is authorized to submit results."""
        data = self.rpc_client.call(
            self.config.oracle_contract_address,
            encode_can_provide_results(self.config.provider_address),
            self.config.provider_address,
        )
        if len(data) < 32:
            raise RuntimeError(f"canProvideResults returned malformed data 0x{bytes(data).hex()}")
        return int.from_bytes(data[:32], "big") != 0

    def get_balance(self) -> int:
        """Fetch the provider's balance and update the wallet metric."""
        balance = self.rpc_client.get_balance(self.config.provider_address)
        self.metrics.wallet_balance.set(float(balance))
        return balance

    def get_starting_block(self) -> int:
        """Block to start scanning from, by precedence of the config options."""
        if self.config.scan_from_block is not None:
            return self.config.scan_from_block
        if self.config.scan_last_blocks is not None:
            latest = self.rpc_client.get_block_number()
            return max(latest - self.config.scan_last_blocks, 0)
        if self.config.scan_last_blocks_period is not None:
            target = datetime.now(timezone.utc) - self.config.scan_last_blocks_period
            return self.get_approx_block_number_by_time(target)
        raise RuntimeError("Config does not specify the scanning interval")

    def get_approx_block_number_by_time(self, time: datetime) -> int:
        """Estimate the block produced at ``time`` from the recent block rate."""
        latest = self.rpc_client.get_block(None)
        if latest is None:
            raise RuntimeError("Could not read latest block")

        if latest.number < _JUMP_BACK:
            raise RuntimeError(
                f"With {latest.number} blocks there is not enough history to estimate the hash rate"
            )
        jump_block = self.rpc_client.get_block(latest.number - _JUMP_BACK)
        if jump_block is None:
            raise RuntimeError("Could not read block")

        seconds_per_block = (latest.timestamp - jump_block.timestamp) / _JUMP_BACK
        if seconds_per_block <= 0:
            raise RuntimeError("Cannot estimate block rate: block timestamps do not advance")

        target_timestamp = math.floor(time.timestamp())
        if target_timestamp < 0:
            raise ValueError(f"Target time is before the epoch: {time}")
        if target_timestamp > latest.timestamp:
            raise RuntimeError(
                f"Target time is in the future: {target_timestamp} > {latest.timestamp}"
            )

        blocks_back = math.floor((latest.timestamp - target_timestamp) / seconds_per_block)
        if blocks_back > latest.number:
            raise RuntimeError(f"Target time {target_timestamp} precedes the chain history")
        approx_block_number = latest.number - blocks_back

        target_block = self.rpc_client.get_block(approx_block_number)
        if target_block is None:
            raise RuntimeError("Could not read block")

        _log.info(
            "Calculated approximate block number by time: target_timestamp=%s "
            "latest_block_number=%s seconds_per_block=%s approx_block_number=%s "
            "off_by_seconds=%s",
            target_timestamp,
            latest.number,
            seconds_per_block,
            approx_block_number,
            abs(target_block.timestamp - target_timestamp),
        )
        return approx_block_number

    def run(self, stop_event: threading.Event | None = None) -> None:
        """Scan new blocks and serve requests until ``stop_event`` is set."""
        stop = stop_event if stop_event is not None else threading.Event()
        from_block = self.get_starting_block()

        if not self._wait_for_auth_and_balance(stop):
            return

        idle = False
        while not stop.is_set():
            to_block = self.rpc_client.get_block_number()
            if from_block > to_block:
                if not idle:
                    _log.debug("Waiting for new blocks")
                    idle = True
                stop.wait(self.config.loop_idle_time_ms / 1000)
                continue
            idle = False

            _log.debug("Processing block range %s..%s", from_block, to_block)
            self._process_block_range(from_block, to_block)
            from_block = to_block + 1

    def run_once(self, from_block: int | None = None, to_block: int | None = None) -> None:
        """Process a single block range and return."""
        if from_block is None:
            from_block = self.get_starting_block()
        if to_block is None:
            to_block = self.rpc_client.get_block_number()
        if from_block > to_block:
            return
        self._process_block_range(from_block, to_block)

    def _wait_for_auth_and_balance(self, stop: threading.Event) -> bool:
        warned = False
        while True:
            if stop.is_set():
                return False
            if self.is_authorized():
                break
            if not warned:
                _log.warning("Provider is unauthorized to provide results - waiting for permissions")
                warned = True
            stop.wait(self._auth_poll_interval)

        warned = False
        while True:
            if stop.is_set():
                return False
            balance = self.get_balance()
            if balance:
                _log.info("Provider balance on start: %s", balance)
                return True
            if not warned:
                _log.warning(
                    "Provider has zero balance - waiting for some tokens to be able to "
                    "submit transactions"
                )
                warned = True
            stop.wait(self._auth_poll_interval)

    def _process_block_range(self, from_block: int, to_block: int) -> None:
        pending = self._scan_block_range(from_block, to_block)
        if pending:
            results = self._process_request_batch(pending)
            self._send_results(results)

    def _scan_block_range(self, from_block: int, to_block: int) -> list[SendRequestEvent]:
        if from_block > to_block:
            raise ValueError(f"Invalid block range {from_block}..{to_block}")

        pending: dict[int, SendRequestEvent] = {}
        topics = [[SEND_REQUEST_TOPIC, PROVIDE_RESULT_TOPIC]]

        page_from = from_block
        while page_from <= to_block:
            page_to = min(to_block, page_from + self.config.blocks_stride)
            _log.info("Getting logs page: from_block=%s to_block=%s", page_from, page_to)
            logs = self.rpc_client.get_logs(
                self.config.oracle_contract_address, topics, page_from, page_to
            )

            for log in logs:
                if log.removed:
                    raise RuntimeError(f"Encountered removed log: {log!r}")
                event = decode_event(log)
                _log.debug("Observed log: %r", log)

                if isinstance(event, SendRequestEvent):
                    if (
                        event.request_id in self.config.ignore_requests
                        or event.consumer_addr in self.config.ignore_consumers
                    ):
                        _log.debug("Ignoring request %s as per configuration", event.request_id)
                    else:
                        _log.debug("Adding pending request %s", event.request_id)
                        pending[event.request_id] = event
                elif isinstance(event, ProvideResultEvent):
                    _log.debug("Removing request %s as fulfilled", event.request_id)
                    pending.pop(event.request_id, None)

            page_from = page_to + 1

        if pending:
            _log.debug("Pending requests: %s", list(pending))
        else:
            _log.debug("No pending requests")
        return list(pending.values())

    def _process_request_batch(self, events: list[SendRequestEvent]) -> list[OdfResult]:
        results = []
        for event in events:
            request = decode_request(event.request_id, event.request)
            result = self._execute_query(request)
            if result is not None:
                results.append(result)
        return results

    def _execute_query(self, request: OdfRequest) -> OdfResult | None:
        _log.debug("Executing API query for request %s", request.id)
        rest_request = QueryRequest(
            query=request.sql,
            query_dialect=QueryDialect.SQL_DATA_FUSION,
            data_format=DataFormat.JSON_AOA,
            include=[Include.INPUT],
            datasets=[DatasetState(id=dataset_id, alias=alias) for alias, dataset_id in request.aliases],
        )

        self.metrics.api_queries_num.inc()

        try:
            response = self.api_client.query(rest_request)
        except BadRequestError as exc:
            _log.warning("Writing unsuccessful response for request %s", request.id)
            return OdfResult(request.id, OdfResultErr(error_message=exc.body))
        except DatasetNotFoundError as exc:
            _log.info("Ignoring request for unknown dataset(s): %s", exc.body)
            return None
        except Exception:
            _log.error("API query failed", exc_info=True)
            raise

        if response.input is None:
            raise RuntimeError("API response does not include the query input")
        state = []
        for dataset in response.input.datasets or []:
            if dataset.block_hash is None:
                raise RuntimeError(f"API response has no block hash for dataset {dataset.id}")
            state.append((dataset.id, dataset.block_hash))

        _log.debug("Writing successful response for request %s", request.id)
        return OdfResult(request.id, OdfResultOk(data=response.output.data, state=state))

    def _send_results(self, results: list[OdfResult]) -> None:
        for result in results:
            self._send_result(result)

    def _send_result(self, result: OdfResult) -> None:
        encoded = result.encode()
        _log.debug("Encoded result: %s", encoded.hex())

        calldata = encode_provide_result(result.request_id, encoded)
        self.metrics.transactions_num.inc()
        tx_hash = self.rpc_client.send_transaction(
            self.config.oracle_contract_address, calldata, self.config.provider_address
        )

        _log.debug(
            "Waiting transaction to be accepted: confirmations=%s timeout_s=%s",
            self.config.transaction_confirmations,
            self.config.transaction_timeout_s,
        )
        receipt = self.rpc_client.wait_for_receipt(
            tx_hash,
            self.config.transaction_confirmations,
            self.config.transaction_timeout_s,
        )
        _log.info("Transaction confirmed: %r", receipt)

        self.get_balance()