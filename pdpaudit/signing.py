"""
Ed25519 signatures over anchored ledger records.

Signing keys and the trust store are provisioned out of band. A record is
signed over its canonical JSON body with the ``signature`` field removed, so
any holder of the trust store can check who anchored it.
"""

import base64
import json
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .hashing import canonicalize


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"))


def record_body(record: Dict[str, Any]) -> Dict[str, Any]:
    """Record without its signature, as signed."""
    body = dict(record)
    body.pop("signature", None)
    return body


class RecordSigner(ABC):
    """Signs ledger record payloads."""

    @abstractmethod
    def sign(self, payload: bytes) -> Tuple[str, str]:
        """Return ``(kid, signature_b64)`` for ``payload``."""
        pass

    @abstractmethod
    def get_kid(self) -> str:
        pass

    def sign_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of ``record`` carrying a signature over its body."""
        body = record_body(record)
        kid, sig_b64 = self.sign(canonicalize(body))
        signed = dict(body)
        signed["signature"] = {"kid": kid, "alg": "ed25519", "sig_b64": sig_b64}
        return signed


class KeyPairSigner(RecordSigner):
    """Signer holding an in-process Ed25519 key."""

    def __init__(self, kid: str, signing_key: SigningKey):
        self._kid = kid
        self._sk = signing_key

    @classmethod
    def generate(cls, kid: str = "pdp-ledger-01") -> "KeyPairSigner":
        return cls(kid, SigningKey.generate())

    @property
    def verify_key_b64(self) -> str:
        return b64e(bytes(self._sk.verify_key))

    def trust_store(self) -> Dict[str, Any]:
        return {"record_signing_keys": {self._kid: self.verify_key_b64}}

    def sign(self, payload: bytes) -> Tuple[str, str]:
        return self._kid, b64e(self._sk.sign(payload).signature)

    def get_kid(self) -> str:
        return self._kid


class FileKeySigner(KeyPairSigner):
    """Signer loading ``{"kid": ..., "private_key_b64": ...}`` from disk."""

    def __init__(self, signing_key_path: str):
        with open(signing_key_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        super().__init__(raw["kid"], SigningKey(b64d(raw["private_key_b64"])))


class TrustStore:
    """
    Public keys for record verification, reloaded when the file changes.
    """

    def __init__(self, path: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        self._path = path
        self._lock = threading.RLock()
        self._cache: Optional[Dict[str, Any]] = data
        self._mtime: float = 0

    def get(self) -> Dict[str, Any]:
        with self._lock:
            if self._path is None:
                return self._cache or {}
            try:
                mtime = os.path.getmtime(self._path)
                if self._cache is None or mtime > self._mtime:
                    with open(self._path, "r", encoding="utf-8") as f:
                        self._cache = json.load(f)
                    self._mtime = mtime
            except FileNotFoundError:
                if self._cache is None:
                    raise
            return self._cache

    def public_key(self, kid: str) -> Optional[str]:
        return self.get().get("record_signing_keys", {}).get(kid)


def verify_ed25519(signature_b64: str, payload: bytes, public_key_b64: str) -> bool:
    try:
        VerifyKey(b64d(public_key_b64)).verify(payload, b64d(signature_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def verify_record_signature(record: Dict[str, Any], trust_store: TrustStore) -> bool:
    """Check a record's signature against the trust store. Unsigned records fail."""
    sig = record.get("signature")
    if not isinstance(sig, dict) or sig.get("alg") != "ed25519":
        return False
    pub = trust_store.public_key(sig.get("kid", ""))
    if not pub:
        return False
    return verify_ed25519(sig.get("sig_b64", ""), canonicalize(record_body(record)), pub)
