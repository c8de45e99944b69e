"""
Proof verification.

Given a masked proof ``(μ', T, R)``, the challenge it answers and the
anchored tags, the verifier recomputes ``expected = Π tag_i^c_i mod N`` and
accepts iff ``T == expected`` and ``g^μ' == R · T^γ mod N`` with
``γ = H(fileId, challengeRef, T, R)``. Unmasked this is ``g^μ == T``.

Verification is a predicate. Any decode failure, binding mismatch or
arithmetic mismatch resolves to INVALID; there is no third outcome. Only
ledger outages propagate, because no verdict can be recorded without the
ledger anyway.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .arithmetic import modpow
from .challenge import Challenge
from .errors import MalformedProof
from .params import ModulusParameters
from .proof import Proof, mask_coefficient, mu_bound
from .transport import decode_proof


class Verdict(str, Enum):
    VALID = "VALID"
    INVALID = "INVALID"

    @property
    def status(self) -> str:
        """Ledger status recorded for this verdict."""
        return "SUCCESS" if self is Verdict.VALID else "MALICIOUS"


class FailureReason(str, Enum):
    MALFORMED_PROOF = "MALFORMED_PROOF"
    FILE_MISMATCH = "FILE_MISMATCH"
    CHALLENGE_MISMATCH = "CHALLENGE_MISMATCH"
    EMPTY_CHALLENGE = "EMPTY_CHALLENGE"
    MU_OUT_OF_RANGE = "MU_OUT_OF_RANGE"
    MISSING_TAG = "MISSING_TAG"
    TAG_MISMATCH = "TAG_MISMATCH"
    EQUATION_MISMATCH = "EQUATION_MISMATCH"


@dataclass
class VerificationResult:
    verdict: Verdict
    reason: Optional[FailureReason] = None
    detail: Optional[str] = None

    def is_valid(self) -> bool:
        return self.verdict is Verdict.VALID

    @classmethod
    def valid(cls) -> "VerificationResult":
        return cls(verdict=Verdict.VALID)

    @classmethod
    def invalid(cls, reason: FailureReason, detail: Optional[str] = None) -> "VerificationResult":
        return cls(verdict=Verdict.INVALID, reason=reason, detail=detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
        }


TagSource = Union[Mapping[int, int], Callable[[str, int], Optional[int]]]


def _lookup_tag(tags: TagSource, file_id: str, block_index: int) -> Optional[int]:
    if isinstance(tags, Mapping):
        return tags.get(block_index)
    return tags(file_id, block_index)


def _decode(proof: Union[Proof, Mapping[str, Any]]) -> Proof:
    if isinstance(proof, Proof):
        return proof
    return decode_proof(proof)


def verify_proof(
    proof: Union[Proof, Mapping[str, Any]],
    challenge: Challenge,
    tags: TagSource,
    params: ModulusParameters,
) -> VerificationResult:
    """
    Check a proof against its challenge and the anchored tags.

    ``tags`` maps block index to anchored tag value, or is a callable
    ``(file_id, block_index) -> tag value | None`` backed by the ledger.
    """
    try:
        proof = _decode(proof)
    except (MalformedProof, KeyError, TypeError, ValueError) as e:
        return VerificationResult.invalid(FailureReason.MALFORMED_PROOF, str(e))

    if proof.file_id != challenge.file_id:
        return VerificationResult.invalid(FailureReason.FILE_MISMATCH)
    if proof.challenge_ref != challenge.challenge_id:
        return VerificationResult.invalid(FailureReason.CHALLENGE_MISMATCH)
    if len(challenge) == 0:
        return VerificationResult.invalid(FailureReason.EMPTY_CHALLENGE)
    bound = mu_bound(params, len(challenge))
    if not 0 <= proof.mu < bound:
        return VerificationResult.invalid(FailureReason.MU_OUT_OF_RANGE)
    if not 0 <= proof.aggregated_tag < params.n:
        return VerificationResult.invalid(FailureReason.MALFORMED_PROOF, "T is not reduced mod N")
    if not 0 < proof.commitment < params.n:
        return VerificationResult.invalid(FailureReason.MALFORMED_PROOF, "R is not reduced mod N")

    expected = 1 % params.n
    for item in challenge.items:
        tag_value = _lookup_tag(tags, challenge.file_id, item.block_index)
        if tag_value is None:
            return VerificationResult.invalid(FailureReason.MISSING_TAG, f"block {item.block_index}")
        expected = expected * modpow(tag_value, item.coefficient, params.n) % params.n

    if expected != proof.aggregated_tag:
        return VerificationResult.invalid(FailureReason.TAG_MISMATCH)

    gamma = mask_coefficient(proof.file_id, proof.challenge_ref, proof.aggregated_tag, proof.commitment)
    check = params.g_pow(proof.mu, bound.bit_length())
    if check != proof.commitment * modpow(expected, gamma, params.n) % params.n:
        return VerificationResult.invalid(FailureReason.EQUATION_MISMATCH)

    return VerificationResult.valid()


def verify(
    proof: Union[Proof, Mapping[str, Any]],
    challenge: Challenge,
    tags: TagSource,
    params: ModulusParameters,
) -> Verdict:
    """Binary integrity verdict for a proof."""
    return verify_proof(proof, challenge, tags, params).verdict
