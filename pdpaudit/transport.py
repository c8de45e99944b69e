"""
Wire format for challenges, proofs and block transfer.

Big integers travel as lowercase hex strings so no JSON number precision
is ever involved. Decoding failures surface as ``MalformedProof``.
"""

import base64
import binascii
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .challenge import Challenge, ChallengeItem, utc_now_iso
from .errors import MalformedProof
from .params import parse_hex_int
from .proof import Proof


def _check_hex(value: str) -> str:
    try:
        if parse_hex_int(value) < 0:
            raise ValueError("negative")
    except (TypeError, ValueError) as e:
        raise ValueError(f"not a non-negative hex integer: {value!r}") from e
    return value.strip().lower()


class ChallengeItemModel(BaseModel):
    blockIndex: int = Field(ge=0)
    coefficient: str

    @field_validator("coefficient")
    @classmethod
    def coefficient_is_hex(cls, v: str) -> str:
        return _check_hex(v)


class ChallengeModel(BaseModel):
    fileId: str = Field(min_length=1)
    challengeId: str = Field(min_length=1)
    issuedAt: Optional[str] = None
    items: List[ChallengeItemModel]


class ProofModel(BaseModel):
    fileId: str = Field(min_length=1)
    challengeRef: str = Field(min_length=1)
    mu: str
    T: str
    R: str

    @field_validator("mu", "T", "R")
    @classmethod
    def values_are_hex(cls, v: str) -> str:
        return _check_hex(v)


class BlockModel(BaseModel):
    blockIndex: int = Field(ge=0)
    data: str  # base64


class StoreRequest(BaseModel):
    uid: Optional[str] = None
    fileId: str = Field(min_length=1)
    blocks: List[BlockModel]


class GetBlocksRequest(BaseModel):
    fileId: str = Field(min_length=1)
    indices: List[int]


class DownloadRequest(BaseModel):
    userId: str = Field(min_length=1)
    allowed: bool
    requestHash: str
    uid: Optional[str] = None


class AuditRequest(BaseModel):
    sampleSize: Optional[int] = Field(default=None, ge=1)
    uid: Optional[str] = None


def encode_challenge(challenge: Challenge) -> Dict[str, Any]:
    return challenge.to_dict()


def decode_challenge(data: Mapping[str, Any]) -> Challenge:
    try:
        model = ChallengeModel.model_validate(data)
        return Challenge(
            file_id=model.fileId,
            challenge_id=model.challengeId,
            items=tuple(
                ChallengeItem(block_index=item.blockIndex, coefficient=parse_hex_int(item.coefficient))
                for item in model.items
            ),
            issued_at=model.issuedAt or utc_now_iso(),
        )
    except (ValidationError, ValueError, TypeError) as e:
        raise MalformedProof(f"malformed challenge: {e}", field="challenge") from e


def encode_proof(proof: Proof) -> Dict[str, Any]:
    return proof.to_dict()


def decode_proof(data: Mapping[str, Any]) -> Proof:
    try:
        model = ProofModel.model_validate(data)
    except (ValidationError, TypeError) as e:
        raise MalformedProof(f"malformed proof: {e}", field="proof") from e
    return Proof(
        file_id=model.fileId,
        challenge_ref=model.challengeRef,
        mu=parse_hex_int(model.mu),
        aggregated_tag=parse_hex_int(model.T),
        commitment=parse_hex_int(model.R),
    )


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    try:
        return base64.b64decode(s.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise ValueError(f"invalid base64: {e}") from e
