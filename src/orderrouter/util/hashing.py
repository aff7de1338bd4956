"""EIP-712 hashing, signing and recovery, plus token-set merkle trees."""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Sequence

from eth_abi import encode
from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import keccak, to_bytes, to_hex

TypedFields = List[Dict[str, str]]


def config_hash(raw_text: str) -> str:
    """SHA-256 hash of the raw configuration file content."""
    return hashlib.sha256(raw_text.encode("utf-8")).hexdigest()


def tag4(name: str) -> str:
    """bytes4(keccak256(name)) as 0x-hex, used for asset classes and data types."""
    return to_hex(keccak(text=name)[:4])


def _to_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return to_bytes(hexstr=value) if value not in ("", "0x") else b""
    return bytes(value)


def normalize_typed_value(
    types: Dict[str, TypedFields], type_name: str, value: Any
) -> Any:
    """Coerce JSON-style values (decimal strings, hex strings) to EIP-712 Python types.

    Indexer payloads and our own order params keep integers as strings and
    byte strings as hex; eth-account wants ints and bytes.
    """
    if type_name.endswith("]"):
        inner = type_name[: type_name.rindex("[")]
        return [normalize_typed_value(types, inner, v) for v in value]
    if type_name in types:
        return {
            field["name"]: normalize_typed_value(types, field["type"], value[field["name"]])
            for field in types[type_name]
        }
    if type_name.startswith(("uint", "int")):
        return _to_int(value)
    if type_name.startswith("bytes"):
        return _to_bytes(value)
    return value


def signable(
    domain: Dict[str, Any], types: Dict[str, TypedFields], message: Dict[str, Any]
) -> SignableMessage:
    """Build the EIP-712 signable message; the primary type is inferred from `types`."""
    message_types = {k: v for k, v in types.items() if k != "EIP712Domain"}
    primary = _primary_type(message_types)
    return encode_typed_data(
        domain_data=dict(domain),
        message_types=message_types,
        message_data=normalize_typed_value(message_types, primary, message),
    )


def _primary_type(types: Dict[str, TypedFields]) -> str:
    referenced = {
        field["type"].split("[")[0] for fields in types.values() for field in fields
    }
    candidates = [name for name in types if name not in referenced]
    if len(candidates) != 1:
        raise ValueError(f"Cannot infer EIP-712 primary type from {sorted(types)}")
    return candidates[0]


def typed_data_hash(
    domain: Dict[str, Any], types: Dict[str, TypedFields], message: Dict[str, Any]
) -> str:
    """The EIP-712 digest that is signed, as 0x-hex."""
    msg = signable(domain, types, message)
    return to_hex(keccak(b"\x19" + msg.version + msg.header + msg.body))


def sign_typed(
    account: Any,
    domain: Dict[str, Any],
    types: Dict[str, TypedFields],
    message: Dict[str, Any],
) -> Dict[str, Any]:
    """Sign typed data; returns the packed signature and its v/r/s parts."""
    signed = account.sign_message(signable(domain, types, message))
    return {
        "signature": to_hex(bytes(signed.signature)),
        "v": int(signed.v),
        "r": to_hex(signed.r.to_bytes(32, "big")),
        "s": to_hex(signed.s.to_bytes(32, "big")),
    }


def recover_typed(
    domain: Dict[str, Any],
    types: Dict[str, TypedFields],
    message: Dict[str, Any],
    signature: str,
) -> str:
    """Recover the lowercase signer address of a typed-data signature."""
    recovered = Account.recover_message(
        signable(domain, types, message), signature=to_bytes(hexstr=signature)
    )
    return recovered.lower()


# ── Token-set merkle tree (sorted pairs) ─────────────────────────────


def _leaf(token_id: int) -> bytes:
    return keccak(encode(["uint256"], [int(token_id)]))


def _parent(a: bytes, b: bytes) -> bytes:
    return keccak(a + b) if a <= b else keccak(b + a)


def _levels(token_ids: Sequence[int]) -> List[List[bytes]]:
    if not token_ids:
        raise ValueError("Token set must not be empty.")
    level = sorted(_leaf(t) for t in token_ids)
    levels = [level]
    while len(level) > 1:
        nxt = []
        for i in range(0, len(level), 2):
            if i + 1 < len(level):
                nxt.append(_parent(level[i], level[i + 1]))
            else:
                nxt.append(level[i])
        levels.append(nxt)
        level = nxt
    return levels


def merkle_root(token_ids: Sequence[int]) -> str:
    return to_hex(_levels(token_ids)[-1][0])


def merkle_proof(token_ids: Sequence[int], token_id: int) -> List[str]:
    levels = _levels(token_ids)
    node = _leaf(token_id)
    try:
        index = levels[0].index(node)
    except ValueError:
        raise ValueError(f"Token {token_id} is not part of the token set.") from None
    proof: List[str] = []
    for level in levels[:-1]:
        sibling = index ^ 1
        if sibling < len(level):
            proof.append(to_hex(level[sibling]))
        index //= 2
    return proof


def verify_merkle_proof(root: str, token_id: int, proof: Sequence[str]) -> bool:
    node = _leaf(token_id)
    for sibling in proof:
        node = _parent(node, to_bytes(hexstr=sibling))
    return to_hex(node) == root


def split_signature(signature: str) -> tuple[int, str, str]:
    """Split a 65-byte packed signature into (v, r, s)."""
    raw = to_bytes(hexstr=signature)
    if len(raw) != 65:
        raise ValueError(f"Expected a 65-byte signature, got {len(raw)} bytes")
    v = raw[64]
    if v < 27:
        v += 27
    return v, to_hex(raw[:32]), to_hex(raw[32:64])
