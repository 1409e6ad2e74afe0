import json

import pytest
import requests
import responses

from kamu_node.api_client import (
    ApiRequestError,
    BadRequestError,
    DataFormat,
    DatasetNotFoundError,
    DatasetState,
    Include,
    OdfApiClientRest,
    QueryDialect,
    QueryError,
    QueryRequest,
    QueryResponse,
)
from kamu_node.identifiers import DatasetID

DID = "did:odf:fed01dcda047d51fc88246c730db522d36791c9e2286af23d9f2b920f09c65952e3d0"
ALIAS = "kamu/covid19.canada.case-details"
BLOCK_HASH = "f162080b0979126041b122a0b0851f286503e8a501b03ba2008bf260b348801abc76f"
QUERY = "select province, total_cases from cases"
URL = "http://localhost:8080"


def oracle_request():
    return QueryRequest(
        query=QUERY,
        include=[Include.INPUT],
        query_dialect=QueryDialect.SQL_DATA_FUSION,
        data_format=DataFormat.JSON_AOA,
        datasets=[DatasetState(id=DatasetID.from_did_str(DID), alias=ALIAS)],
    )


def oracle_response_json():
    return {
        "input": {
            "include": ["Input"],
            "query": QUERY,
            "queryDialect": "SqlDataFusion",
            "dataFormat": "JsonAoa",
            "datasets": [{"id": DID, "alias": ALIAS, "blockHash": BLOCK_HASH}],
            "skip": 0,
            "limit": 1000,
        },
        "output": {"data": [["ON", 100500]], "dataFormat": "JsonAoa"},
    }


def test_request_serialization():
    assert oracle_request().to_json() == {
        "include": ["Input"],
        "query": QUERY,
        "queryDialect": "SqlDataFusion",
        "dataFormat": "JsonAoa",
        "datasets": [{"alias": ALIAS, "id": DID}],
    }


def test_request_round_trip():
    request = oracle_request()
    assert QueryRequest.from_json(request.to_json()) == request


def test_response_parsing():
    response = QueryResponse.from_json(oracle_response_json())
    assert response.output.data == [["ON", 100500]]
    assert response.output.data_format is DataFormat.JSON_AOA
    assert response.input.skip == 0
    assert response.input.limit == 1000
    state = response.input.datasets[0]
    assert state.id.as_did_str() == DID
    assert state.alias == ALIAS
    assert state.block_hash.to_multibase() == BLOCK_HASH


def test_response_requires_output():
    with pytest.raises(ValueError):
        QueryResponse.from_json({"input": None})


def test_dataset_state_requires_id():
    with pytest.raises(ValueError):
        DatasetState.from_json({"alias": ALIAS})


@pytest.mark.parametrize(
    ("text", "expected"),
    [("input", Include.INPUT), ("PROOF", Include.PROOF), ("Schema", Include.SCHEMA)],
)
def test_include_parse_is_case_insensitive(text, expected):
    assert Include.parse(text) is expected


def test_include_parse_rejects_unknown():
    with pytest.raises(ValueError):
        Include.parse("bogus")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("JsonAos", DataFormat.JSON_AOS),
        ("jsonsoa", DataFormat.JSON_SOA),
        ("json-aoa", DataFormat.JSON_AOA),
    ],
)
def test_data_format_aliases(text, expected):
    assert DataFormat.parse(text) is expected


def test_data_format_rejects_mixed_case():
    with pytest.raises(ValueError):
        DataFormat.parse("Jsonaoa")


def test_rest_query_success_sends_auth_and_body():
    client = OdfApiClientRest(URL + "/", "token")
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL + "/query", json=oracle_response_json(), status=200)
        response = client.query(oracle_request())
        sent = rsps.calls[0].request
    assert sent.headers["Authorization"] == "Bearer token"
    assert json.loads(sent.body) == oracle_request().to_json()
    assert response.output.data == [["ON", 100500]]


def test_rest_query_bad_request():
    client = OdfApiClientRest(URL, None)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL + "/query", body="syntax error", status=400)
        with pytest.raises(BadRequestError) as info:
            client.query(oracle_request())
    assert info.value.body == "syntax error"
    assert str(info.value) == "Bad request: syntax error"


def test_rest_query_not_found():
    client = OdfApiClientRest(URL, None)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL + "/query", body="no such dataset", status=404)
        with pytest.raises(DatasetNotFoundError) as info:
            client.query(oracle_request())
    assert str(info.value) == "Dataset not found: no such dataset"


def test_rest_query_other_status():
    client = OdfApiClientRest(URL, None)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL + "/query", body="boom", status=500)
        with pytest.raises(ApiRequestError) as info:
            client.query(oracle_request())
    assert info.value.status == 500
    assert info.value.body == "boom"


def test_rest_query_connection_failure():
    client = OdfApiClientRest(URL, None)
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.POST,
            URL + "/query",
            body=requests.ConnectionError("refused"),
        )
        with pytest.raises(QueryError):
            client.query(oracle_request())


def test_rest_query_malformed_success_body():
    client = OdfApiClientRest(URL, None)
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, URL + "/query", body="not json", status=200)
        with pytest.raises(QueryError):
            client.query(oracle_request())


def test_rest_client_rejects_bad_token():
    with pytest.raises(ValueError):
        OdfApiClientRest(URL, "token\nX-Other: 1")