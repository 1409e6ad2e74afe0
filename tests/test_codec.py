import cbor2
import pytest

from kamu_node.codec import (
    OdfRequest,
    OdfResult,
    OdfResultErr,
    OdfResultOk,
    RequestDecodeError,
    decode_request,
)
from kamu_node.identifiers import DatasetID, Multihash

DID = "did:odf:fed01dcda047d51fc88246c730db522d36791c9e2286af23d9f2b920f09c65952e3d0"
BLOCK_HASH = "f162080b0979126041b122a0b0851f286503e8a501b03ba2008bf260b348801abc76f"
ALIAS = "kamu/covid19.canada.case-details"


def _did_bytes():
    return DatasetID.from_did_str(DID).as_bytes()


def test_decode_request_with_alias_and_sql():
    payload = cbor2.dumps([1, "ds", ALIAS, _did_bytes(), "sql", "select 1"])
    request = decode_request(7, payload)
    assert request == OdfRequest(
        id=7, sql="select 1", aliases=[(ALIAS, DatasetID.from_did_str(DID))]
    )


def test_decode_request_without_aliases():
    request = decode_request(3, cbor2.dumps([1, "sql", "select 2"]))
    assert request.sql == "select 2"
    assert request.aliases == []
    assert request.id == 3


def test_decode_request_last_sql_wins():
    request = decode_request(1, cbor2.dumps([1, "sql", "a", "sql", "b"]))
    assert request.sql == "b"


@pytest.mark.parametrize(
    "items, message",
    [
        ([], "version specifier"),
        (["sql", "q"], "version specifier"),
        ([2, "sql", "q"], "Unsupported protocol version"),
        ([1, 5, "q"], "Expected a key"),
        ([1, "ds", 5], "Expected an alias"),
        ([1, "ds", ALIAS, "not bytes"], "Expected a dataset ID"),
        ([1, "ds", ALIAS, b"\x01\x02"], "Expected DID bytes"),
        ([1, "sql"], "Expected a query"),
        ([1, "what", "q"], "Unknown key what"),
        ([1], "does not specify a query"),
    ],
)
def test_decode_request_errors(items, message):
    with pytest.raises(RequestDecodeError, match=message):
        decode_request(1, cbor2.dumps(items))


def test_decode_request_rejects_non_array():
    with pytest.raises(RequestDecodeError):
        decode_request(1, cbor2.dumps({"sql": "q"}))


def test_decode_request_rejects_garbage():
    with pytest.raises(RequestDecodeError):
        decode_request(1, b"\xff\xff")


def test_ok_result_to_cbor():
    dataset_id = DatasetID.from_did_str(DID)
    block_hash = Multihash.from_multibase(BLOCK_HASH)
    result = OdfResult(
        request_id=1,
        inner=OdfResultOk(data=[["ON", 100500]], state=[(dataset_id, block_hash)]),
    )
    assert result.to_cbor() == [
        1,
        True,
        [["ON", 100500]],
        b"",
        [dataset_id.as_bytes(), block_hash.as_bytes()],
    ]


def test_ok_result_encode_round_trips():
    dataset_id = DatasetID.from_did_str(DID)
    block_hash = Multihash.from_multibase(BLOCK_HASH)
    result = OdfResult(
        request_id=1,
        inner=OdfResultOk(data=[["ON", 100500]], state=[(dataset_id, block_hash)]),
    )
    encoded = result.encode()
    assert encoded[:3] == b"\x85\x01\xf5"
    assert cbor2.loads(encoded) == result.to_cbor()


def test_error_result_wire_bytes():
    result = OdfResult(request_id=9, inner=OdfResultErr(error_message="x"))
    assert result.to_cbor() == [1, False, "x"]
    assert result.encode() == b"\x83\x01\xf4\x61x"


def test_ok_result_float_data_round_trips():
    result = OdfResult(request_id=2, inner=OdfResultOk(data={"v": 1.5, "n": None}))
    assert cbor2.loads(result.encode()) == [1, True, {"v": 1.5, "n": None}, b"", []]