"""Client for the ODF data query API."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import requests

from kamu_node.identifiers import DatasetID, Multihash


def _require(data: dict[str, Any], key: str) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"expected an object, got {type(data).__name__}")
    if key not in data:
        raise ValueError(f"missing field {key!r}")
    return data[key]


class QueryDialect(Enum):
    SQL_DATA_FUSION = "SqlDataFusion"
    SQL_FLINK = "SqlFlink"
    SQL_RISING_WAVE = "SqlRisingWave"
    SQL_SPARK = "SqlSpark"


class Include(Enum):
    """Extra information to include in a query response."""

    INPUT = "Input"
    PROOF = "Proof"
    SCHEMA = "Schema"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, text: str) -> Include:
        """Parse a name, ignoring ASCII case."""
        for member in cls:
            if member.value.lower() == text.lower():
                return member
        raise ValueError(f"unknown include option {text!r}")

    @classmethod
    def _from_wire(cls, text: str) -> Include:
        for member in cls:
            if text in (member.value, member.value.lower()):
                return member
        raise ValueError(f"unknown include option {text!r}")


class DataFormat(Enum):
    """How data is laid out in a response."""

    JSON_AOS = "JsonAos"
    JSON_SOA = "JsonSoa"
    JSON_AOA = "JsonAoa"

    @classmethod
    def parse(cls, text: str) -> DataFormat:
        """Parse a name or one of its lower-case aliases."""
        for member in cls:
            lower = member.value.lower()
            aliases = (member.value, lower, f"{lower[:4]}-{lower[4:]}")
            if text in aliases:
                return member
        raise ValueError(f"unknown data format {text!r}")


@dataclass
class DatasetState:
    """Alias and optional pinned state of a dataset used in a query."""

    id: DatasetID
    alias: str
    block_hash: Multihash | None = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id.as_did_str(), "alias": self.alias}
        if self.block_hash is not None:
            data["blockHash"] = self.block_hash.to_multibase()
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> DatasetState:
        block_hash = data.get("blockHash") if isinstance(data, dict) else None
        return cls(
            id=DatasetID.from_did_str(_require(data, "id")),
            alias=_require(data, "alias"),
            block_hash=Multihash.from_multibase(block_hash) if block_hash is not None else None,
        )


@dataclass
class QueryRequest:
    """Body of a data query."""

    query: str
    query_dialect: QueryDialect | None = None
    data_format: DataFormat | None = None
    include: list[Include] = field(default_factory=list)
    datasets: list[DatasetState] | None = None
    skip: int | None = None
    limit: int | None = None

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"query": self.query}
        if self.query_dialect is not None:
            data["queryDialect"] = self.query_dialect.value
        if self.data_format is not None:
            data["dataFormat"] = self.data_format.value
        if self.include:
            data["include"] = [item.value for item in self.include]
        if self.datasets is not None:
            data["datasets"] = [state.to_json() for state in self.datasets]
        if self.skip is not None:
            data["skip"] = self.skip
        if self.limit is not None:
            data["limit"] = self.limit
        return data

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> QueryRequest:
        query = _require(data, "query")
        dialect = data.get("queryDialect")
        data_format = data.get("dataFormat")
        datasets = data.get("datasets")
        return cls(
            query=query,
            query_dialect=QueryDialect(dialect) if dialect is not None else None,
            data_format=DataFormat.parse(data_format) if data_format is not None else None,
            include=[Include._from_wire(item) for item in data.get("include") or []],
            datasets=(
                [DatasetState.from_json(item) for item in datasets]
                if datasets is not None
                else None
            ),
            skip=data.get("skip"),
            limit=data.get("limit"),
        )


@dataclass
class Outputs:
    """Query results."""

    data: Any
    data_format: DataFormat

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> Outputs:
        return cls(
            data=_require(data, "data"),
            data_format=DataFormat.parse(_require(data, "dataFormat")),
        )


@dataclass
class QueryResponse:
    """Query results and the inputs that reproduce them."""

    output: Outputs
    input: QueryRequest | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> QueryResponse:
        raw_input = data.get("input") if isinstance(data, dict) else None
        return cls(
            output=Outputs.from_json(_require(data, "output")),
            input=QueryRequest.from_json(raw_input) if raw_input is not None else None,
        )


class QueryError(Exception):
    """A query could not be executed."""


class DatasetNotFoundError(QueryError):
    def __init__(self, body: str) -> None:
        super().__init__(f"Dataset not found: {body}")
        self.body = body


class BadRequestError(QueryError):
    def __init__(self, body: str) -> None:
        super().__init__(f"Bad request: {body}")
        self.body = body


class ApiRequestError(QueryError):
    def __init__(self, status: int, body: str | None) -> None:
        super().__init__(f"Api request error status code {status} body: {body!r}")
        self.status = status
        self.body = body


class OdfApiClient(abc.ABC):
    """Interface for making ODF data queries."""

    @abc.abstractmethod
    def query(self, request: QueryRequest) -> QueryResponse:
        """Execute a query or raise a QueryError."""


class OdfApiClientRest(OdfApiClient):
    """Queries an ODF node over its REST API."""

    def __init__(self, url: str, access_token: str | None = None) -> None:
        self._session = requests.Session()
        if access_token is not None:
            if any(char in access_token for char in "\r\n\0"):
                raise ValueError("access token contains invalid header characters")
            self._session.headers["Authorization"] = f"Bearer {access_token}"
        self.query_url = f"{url.rstrip('/')}/query"

    def query(self, request: QueryRequest) -> QueryResponse:
        try:
            response = self._session.post(self.query_url, json=request.to_json())
        except requests.RequestException as exc:
            raise QueryError(f"query request failed: {exc}") from exc

        if response.status_code == 200:
            try:
                return QueryResponse.from_json(response.json())
            except ValueError as exc:
                raise QueryError(f"malformed query response: {exc}") from exc
        if response.status_code == 400:
            raise BadRequestError(response.text)
        if response.status_code == 404:
            raise DatasetNotFoundError(response.text)
        raise ApiRequestError(response.status_code, response.text)