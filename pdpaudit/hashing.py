"""
Hashing and canonical encoding.

Ledger payloads are hashed over canonical JSON (sorted keys, no whitespace,
UTF-8) so that any party re-serialising a record reproduces the same bytes.
"""

import hashlib
import json
import struct
from typing import Any, Optional, Union


def canonicalize(obj: Any) -> bytes:
    """Convert an object to canonical JSON bytes."""
    s = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return s.encode("utf-8")


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 and return lowercase hex."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def block_digest_bytes(file_id: str, block_index: int, ciphertext: bytes) -> bytes:
    """
    SHA-256 over the block identity and content.

    Layout: ``u32be(len(file_id)) || file_id || u64be(block_index) || ciphertext``.
    The length prefix keeps ``("F1", 23)`` and ``("F12", 3)`` apart.
    """
    fid = file_id.encode("utf-8")
    h = hashlib.sha256()
    h.update(struct.pack(">I", len(fid)))
    h.update(fid)
    h.update(struct.pack(">Q", block_index))
    h.update(ciphertext)
    return h.digest()


def block_digest(file_id: str, block_index: int, ciphertext: bytes, modulus: int) -> int:
    """Block digest reduced into the exponent domain ``[0, modulus)``."""
    return int.from_bytes(block_digest_bytes(file_id, block_index, ciphertext), "big") % modulus


def record_hash(record: dict) -> str:
    """Hash of a ledger record body, excluding its signature."""
    body = dict(record)
    body.pop("signature", None)
    return sha256_hex(canonicalize(body))


def chain_entry_hash(prev_entry_hash: Optional[str], payload_hash: str) -> str:
    """Link a payload hash to the previous chain entry."""
    data = (prev_entry_hash or "").encode("utf-8") + payload_hash.encode("utf-8")
    return sha256_hex(data)
