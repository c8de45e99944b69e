"""
Error taxonomy for the PDP audit protocol.

Every error carries a stable ``code`` so that API responses, audit records
and log lines can refer to failures without depending on message text.
"""

from typing import Optional


class PdpError(Exception):
    """Base class for all protocol and ledger errors."""

    code = "PDP_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidModulus(PdpError, ValueError):
    """Modulus parameters are unusable. Raised at startup, not per request."""

    code = "INVALID_MODULUS"


class EmptyBlock(PdpError, ValueError):
    """A zero-length block cannot be tagged."""

    code = "EMPTY_BLOCK"

    def __init__(self, file_id: str, block_index: int):
        super().__init__(f"block {block_index} of file {file_id!r} is empty")
        self.file_id = file_id
        self.block_index = block_index


class NoAuditableBlocks(PdpError):
    """No block of the file has an anchored tag."""

    code = "NO_AUDITABLE_BLOCKS"

    def __init__(self, file_id: str):
        super().__init__(f"file {file_id!r} has no anchored tags")
        self.file_id = file_id


class MissingBlock(PdpError):
    """A challenged block could not be fetched from storage."""

    code = "MISSING_BLOCK"

    def __init__(self, file_id: str, block_index: int):
        super().__init__(f"block {block_index} of file {file_id!r} is missing")
        self.file_id = file_id
        self.block_index = block_index


class MissingTag(PdpError):
    """A challenged block has no anchored tag."""

    code = "MISSING_TAG"

    def __init__(self, file_id: str, block_index: int):
        super().__init__(f"no anchored tag for block {block_index} of file {file_id!r}")
        self.file_id = file_id
        self.block_index = block_index


class DuplicateTag(PdpError):
    """A different tag value is already anchored for this block."""

    code = "DUPLICATE_TAG"

    def __init__(self, file_id: str, block_index: int):
        super().__init__(f"block {block_index} of file {file_id!r} already has a different tag")
        self.file_id = file_id
        self.block_index = block_index


class LedgerUnavailable(PdpError):
    """The ledger could not complete a read or write. Nothing was committed."""

    code = "LEDGER_UNAVAILABLE"


class MalformedProof(PdpError, ValueError):
    """A serialized challenge or proof could not be decoded."""

    code = "MALFORMED_PROOF"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class RandomnessUnavailable(PdpError):
    """No cryptographically secure random source is available."""

    code = "RANDOMNESS_UNAVAILABLE"


class ChallengeReplayed(PdpError):
    """The prover was asked to answer a challenge it has already consumed."""

    code = "CHALLENGE_REPLAYED"

    def __init__(self, challenge_id: str):
        super().__init__(f"challenge {challenge_id} was already answered")
        self.challenge_id = challenge_id


class UnknownChallenge(PdpError):
    """A proof refers to a challenge this verifier has no open record of."""

    code = "UNKNOWN_CHALLENGE"

    def __init__(self, challenge_id: str):
        super().__init__(f"no open challenge {challenge_id}")
        self.challenge_id = challenge_id


# Errors raised while answering a challenge that count as evidence of data loss.
ROUND_EVIDENCE_ERRORS = (MissingBlock, MissingTag, ChallengeReplayed, MalformedProof)
