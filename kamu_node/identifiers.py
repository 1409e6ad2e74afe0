"""Dataset identifiers and content hashes used in ODF requests."""

from __future__ import annotations

import string
from dataclasses import dataclass

_DID_PREFIX = "did:odf:"
_ED25519_PUB_CODEC = 0xED
_ED25519_KEY_LEN = 32
_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        low = value & 0x7F
        value >>= 7
        if value:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def _decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode an unsigned varint; return the value and the offset after it."""
    value = 0
    shift = 0
    for consumed, byte in enumerate(data[offset : offset + 9], start=1):
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, offset + consumed
        shift += 7
    raise ValueError("truncated or oversized varint")


def _decode_base58(body: str) -> bytes:
    number = 0
    for char in body:
        digit = _BASE58_ALPHABET.find(char)
        if digit < 0:
            raise ValueError(f"invalid base58 character {char!r}")
        number = number * 58 + digit
    raw = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    leading_zeros = len(body) - len(body.lstrip("1"))
    return b"\0" * leading_zeros + raw


def _decode_multibase(text: str) -> bytes:
    if not text:
        raise ValueError("empty multibase string")
    prefix, body = text[0], text[1:]
    if prefix in "fF":
        if len(body) % 2 or not all(c in string.hexdigits for c in body):
            raise ValueError(f"invalid base16 data: {text!r}")
        return bytes.fromhex(body)
    if prefix == "z":
        return _decode_base58(body)
    raise ValueError(f"unsupported multibase prefix {prefix!r}")


@dataclass(frozen=True)
class DatasetID:
    """Globally unique dataset identity backed by an ed25519 public key."""

    key: bytes

    def __post_init__(self) -> None:
        if len(self.key) != _ED25519_KEY_LEN:
            raise ValueError(
                f"dataset key must be {_ED25519_KEY_LEN} bytes, got {len(self.key)}"
            )

    @classmethod
    def from_bytes(cls, data: bytes) -> DatasetID:
        codec, offset = _decode_varint(bytes(data))
        if codec != _ED25519_PUB_CODEC:
            raise ValueError(f"unsupported dataset ID codec 0x{codec:x}")
        return cls(bytes(data[offset:]))

    @classmethod
    def from_did_str(cls, text: str) -> DatasetID:
        if not text.startswith(_DID_PREFIX):
            raise ValueError(f"not an ODF DID: {text!r}")
        return cls.from_bytes(_decode_multibase(text[len(_DID_PREFIX) :]))

    def as_bytes(self) -> bytes:
        return _encode_varint(_ED25519_PUB_CODEC) + self.key

    def as_did_str(self) -> str:
        return f"{_DID_PREFIX}f{self.as_bytes().hex()}"

    def __str__(self) -> str:
        return self.as_did_str()


@dataclass(frozen=True)
class Multihash:
    """Self-describing hash: a hash function code and its digest."""

    code: int
    digest: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> Multihash:
        data = bytes(data)
        code, offset = _decode_varint(data)
        length, offset = _decode_varint(data, offset)
        digest = data[offset:]
        if len(digest) != length:
            raise ValueError(
                f"multihash declares {length} digest bytes but has {len(digest)}"
            )
        return cls(code, digest)

    @classmethod
    def from_multibase(cls, text: str) -> Multihash:
        return cls.from_bytes(_decode_multibase(text))

    def as_bytes(self) -> bytes:
        return _encode_varint(self.code) + _encode_varint(len(self.digest)) + self.digest

    def to_multibase(self) -> str:
        return "f" + self.as_bytes().hex()

    def __str__(self) -> str:
        return self.to_multibase()