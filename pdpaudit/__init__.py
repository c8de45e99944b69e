"""
PDP Audit Ledger

Version: 0.1.0

Provable data possession with ledger-anchored audit outcomes.

A data owner tags every encrypted block with a homomorphic verifiable tag
``g^m mod N`` and anchors the tags in an append-only ledger. An auditor later
challenges a random subset of blocks; the storage node answers with one
aggregated, masked proof ``(μ', T, R)`` and the auditor checks

    T == Π tag_i^c_i mod N    and    g^μ' == R · T^γ mod N

without ever seeing a block. Every verdict is appended to the ledger and
linked into a hash chain.

Usage:
    from pdpaudit import (
        ModulusParameters,
        AuditLedgerBinding,
        AuditService,
        InMemoryLedger,
        InMemoryBlockStore,
        local_prover,
    )

    params = ModulusParameters.load("config/params.json")
    binding = AuditLedgerBinding(InMemoryLedger())
    service = AuditService(params, binding)

    blocks = InMemoryBlockStore()
    for i, data in enumerate(chunks):
        blocks.put_block("F1", i, data)
    service.ingest("F1", chunks)

    outcome = service.run_round("F1", local_prover(params, blocks, binding))
    if outcome.verdict is Verdict.VALID:
        ...
"""

__version__ = "0.1.0"

from .errors import (
    PdpError,
    InvalidModulus,
    EmptyBlock,
    NoAuditableBlocks,
    MissingBlock,
    MissingTag,
    DuplicateTag,
    LedgerUnavailable,
    MalformedProof,
    RandomnessUnavailable,
    ChallengeReplayed,
    UnknownChallenge,
)

from .arithmetic import modpow, modmul, multi_modpow, ladder_modpow
from .params import ModulusParameters

from .tags import Tag, generate_tag, generate_tags
from .challenge import Challenge, ChallengeItem, build_challenge
from .proof import Proof, Prover, generate_proof, mu_bound
from .verifier import (
    Verdict,
    FailureReason,
    VerificationResult,
    verify,
    verify_proof,
)

from .ledger import LedgerStore, InMemoryLedger, SqliteLedger
from .binding import (
    AuditLedgerBinding,
    AuditRecord,
    AuditStatus,
    DownloadRecord,
    FileState,
    TagRecord,
)
from .signing import KeyPairSigner, FileKeySigner, TrustStore, verify_record_signature
from .storage import BlockStore, InMemoryBlockStore, FileSystemBlockStore
from .transport import encode_challenge, decode_challenge, encode_proof, decode_proof
from .auditor import AuditService, AuditOutcome, local_prover


__all__ = [
    "__version__",

    # Errors
    "PdpError",
    "InvalidModulus",
    "EmptyBlock",
    "NoAuditableBlocks",
    "MissingBlock",
    "MissingTag",
    "DuplicateTag",
    "LedgerUnavailable",
    "MalformedProof",
    "RandomnessUnavailable",
    "ChallengeReplayed",
    "UnknownChallenge",

    # Arithmetic
    "modpow",
    "modmul",
    "multi_modpow",
    "ladder_modpow",
    "ModulusParameters",

    # Protocol
    "Tag",
    "generate_tag",
    "generate_tags",
    "Challenge",
    "ChallengeItem",
    "build_challenge",
    "Proof",
    "Prover",
    "generate_proof",
    "mu_bound",
    "Verdict",
    "FailureReason",
    "VerificationResult",
    "verify",
    "verify_proof",

    # Ledger
    "LedgerStore",
    "InMemoryLedger",
    "SqliteLedger",
    "AuditLedgerBinding",
    "AuditRecord",
    "AuditStatus",
    "DownloadRecord",
    "FileState",
    "TagRecord",
    "KeyPairSigner",
    "FileKeySigner",
    "TrustStore",
    "verify_record_signature",

    # Storage and transport
    "BlockStore",
    "InMemoryBlockStore",
    "FileSystemBlockStore",
    "encode_challenge",
    "decode_challenge",
    "encode_proof",
    "decode_proof",

    # Orchestration
    "AuditService",
    "AuditOutcome",
    "local_prover",
]
