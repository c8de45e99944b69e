"""
Audit round orchestration.

Ties the protocol pieces to the ledger:

    ingest:    blocks -> tags -> anchored tag records
    run_round: anchored tags -> challenge -> prover -> verdict -> audit record

A round that cannot finish because the prover is missing data is itself
recorded as MALICIOUS, so every round leaves a trace. Ledger outages
propagate without any partial record.
"""

import random
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .binding import AuditLedgerBinding, AuditRecord, AuditStatus, TagRecord
from .challenge import Challenge, build_challenge
from .errors import MalformedProof, PdpError, ROUND_EVIDENCE_ERRORS, UnknownChallenge
from .hashing import canonicalize, sha256_hex
from .logging_config import audit_log
from .params import ModulusParameters, to_hex
from .proof import BlockFetcher, Proof, Prover
from .storage import BlockStore
from .tags import BlockInput, generate_tags
from .transport import decode_proof
from .verifier import FailureReason, VerificationResult, Verdict, verify_proof

# 460 challenged blocks detect a 1% corruption with ~99% probability.
DEFAULT_SAMPLE_SIZE = 460
DEFAULT_MAX_OPEN_CHALLENGES = 10_000

ProverFn = Callable[[Challenge], Union[Proof, Mapping[str, Any]]]


@dataclass
class AuditOutcome:
    challenge: Challenge
    record: AuditRecord
    result: Optional[VerificationResult] = None
    error_code: Optional[str] = None

    @property
    def verdict(self) -> Verdict:
        if self.record.status is AuditStatus.SUCCESS:
            return Verdict.VALID
        return Verdict.INVALID

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "challenge": self.challenge.to_dict(),
            "record": self.record.to_dict(),
            "reason": self.record.reason,
        }


def failure_evidence_hash(challenge: Challenge, error: PdpError) -> str:
    """Hash standing in for the proof when the prover could not answer."""
    return sha256_hex(canonicalize({
        "fileId": challenge.file_id,
        "challengeRef": challenge.challenge_id,
        "error": error.code,
        "blockIndex": getattr(error, "block_index", None),
    }))


class AuditService:
    """Verifier/coordinator side of the protocol."""

    def __init__(
        self,
        params: ModulusParameters,
        binding: AuditLedgerBinding,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        random_source: Optional[random.Random] = None,
        max_open: int = DEFAULT_MAX_OPEN_CHALLENGES
    ):
        if sample_size < 1:
            raise ValueError("sample_size must be at least 1")
        if max_open < 1:
            raise ValueError("max_open must be at least 1")
        self.params = params
        self.binding = binding
        self.sample_size = sample_size
        self._random_source = random_source
        self._open: "OrderedDict[str, Challenge]" = OrderedDict()
        self._max_open = max_open
        self._open_lock = threading.Lock()

    def ingest(self, file_id: str, blocks: BlockInput, uid: Optional[str] = None) -> List[TagRecord]:
        """Tag every block and anchor the tags. An empty block aborts before any write."""
        tags = generate_tags(file_id, blocks, self.params)
        return self.binding.anchor_tags(file_id, tags, uid=uid)

    def issue_challenge(
        self,
        file_id: str,
        sample_size: Optional[int] = None,
        tag_values: Optional[Mapping[int, int]] = None
    ) -> Challenge:
        if tag_values is None:
            tag_values = self.binding.get_tag_values(file_id)
        challenge = build_challenge(
            file_id,
            tag_values.keys(),
            sample_size or self.sample_size,
            self.params,
            self._random_source,
        )
        audit_log.challenge_issued(file_id, challenge.challenge_id, len(challenge))
        return challenge

    def run_round(
        self,
        file_id: str,
        prover: ProverFn,
        sample_size: Optional[int] = None,
        uid: Optional[str] = None
    ) -> AuditOutcome:
        """
        Run one complete audit round against ``prover``.

        Raises:
            NoAuditableBlocks: the file has no anchored tags
            LedgerUnavailable: the verdict could not be recorded
        """
        tag_values = self.binding.get_tag_values(file_id)
        challenge = self.issue_challenge(file_id, sample_size, tag_values)
        try:
            proof = prover(challenge)
        except ROUND_EVIDENCE_ERRORS as e:
            return self._record_failure(challenge, e, uid)
        return self._verify_and_record(challenge, proof, tag_values, uid)

    def open_challenge(self, file_id: str, sample_size: Optional[int] = None) -> Challenge:
        """
        Issue a challenge for a remote prover and keep it until its proof arrives.

        At most ``max_open`` challenges are held; the oldest unanswered one is
        dropped first and a late proof for it gets ``UnknownChallenge``.
        """
        challenge = self.issue_challenge(file_id, sample_size)
        evicted = []
        with self._open_lock:
            self._open[challenge.challenge_id] = challenge
            while len(self._open) > self._max_open:
                evicted.append(self._open.popitem(last=False)[1])
        for stale in evicted:
            audit_log.challenge_evicted(stale.file_id, stale.challenge_id)
        return challenge

    def open_challenge_count(self) -> int:
        with self._open_lock:
            return len(self._open)

    def take_open_challenge(self, challenge_id: str) -> Challenge:
        """Remove and return an open challenge; each one is consumed once."""
        with self._open_lock:
            challenge = self._open.pop(challenge_id, None)
        if challenge is None:
            raise UnknownChallenge(challenge_id)
        return challenge

    def submit_proof(self, proof: Mapping[str, Any], uid: Optional[str] = None) -> AuditOutcome:
        """Verify and record a remote proof against the open challenge it names."""
        challenge_ref = proof.get("challengeRef") if isinstance(proof, Mapping) else None
        if not isinstance(challenge_ref, str) or not challenge_ref:
            raise MalformedProof("proof does not name a challenge", field="challengeRef")
        return self.complete_round(self.take_open_challenge(challenge_ref), proof, uid=uid)

    def complete_round(
        self,
        challenge: Challenge,
        proof: Union[Proof, Mapping[str, Any]],
        uid: Optional[str] = None
    ) -> AuditOutcome:
        """Verify and record a proof that arrived separately from its challenge."""
        tag_values = self.binding.get_tag_values(challenge.file_id)
        return self._verify_and_record(challenge, proof, tag_values, uid)

    def record_prover_failure(
        self,
        challenge: Challenge,
        error: PdpError,
        uid: Optional[str] = None
    ) -> AuditOutcome:
        """Record a round whose prover reported missing data."""
        return self._record_failure(challenge, error, uid)

    def _record_failure(self, challenge: Challenge, error: PdpError, uid: Optional[str]) -> AuditOutcome:
        audit_log.round_evidence_missing(
            challenge.file_id,
            challenge.challenge_id,
            error.code,
            getattr(error, "block_index", None),
        )
        record = self.binding.record_audit(
            challenge.file_id,
            proof_hash=failure_evidence_hash(challenge, error),
            mu_hex="",
            status=AuditStatus.MALICIOUS,
            challenge_ref=challenge.challenge_id,
            sample_size=len(challenge),
            reason=error.code,
            uid=uid,
        )
        return AuditOutcome(challenge=challenge, record=record, error_code=error.code)

    def _verify_and_record(
        self,
        challenge: Challenge,
        proof: Union[Proof, Mapping[str, Any]],
        tag_values: Mapping[int, int],
        uid: Optional[str]
    ) -> AuditOutcome:
        if not isinstance(proof, Proof):
            try:
                proof = decode_proof(proof)
            except MalformedProof as e:
                result = VerificationResult.invalid(FailureReason.MALFORMED_PROOF)
                record = self.binding.record_audit(
                    challenge.file_id,
                    proof_hash=failure_evidence_hash(challenge, e),
                    mu_hex="",
                    status=AuditStatus.MALICIOUS,
                    challenge_ref=challenge.challenge_id,
                    sample_size=len(challenge),
                    reason=FailureReason.MALFORMED_PROOF.value,
                    uid=uid,
                )
                return AuditOutcome(challenge=challenge, record=record, result=result)

        proof_hash = proof.proof_hash()
        audit_log.proof_generated(challenge.file_id, challenge.challenge_id, proof_hash)
        result = verify_proof(proof, challenge, tag_values, self.params)
        record = self.binding.record_audit(
            challenge.file_id,
            proof_hash=proof_hash,
            mu_hex=to_hex(proof.mu),
            status=AuditStatus(result.verdict.status),
            challenge_ref=challenge.challenge_id,
            sample_size=len(challenge),
            reason=result.reason.value if result.reason else None,
            uid=uid,
        )
        return AuditOutcome(challenge=challenge, record=record, result=result)


def local_prover(params: ModulusParameters, blocks: Union[BlockStore, BlockFetcher],
                 binding: AuditLedgerBinding) -> Prover:
    """Prover reading blocks from ``blocks`` and tags from the ledger."""
    fetch = blocks.get_block if isinstance(blocks, BlockStore) else blocks
    return Prover(params, fetch, binding.get_tag_value)
