"""
Prover-side proof generation.

Runs where the blocks are readable (the storage node). For a challenge
``{(i, c_i)}`` the prover computes

    μ = Σ c_i · m_i          (m_i recomputed from the stored block)
    T = Π tag_i^c_i mod N    (tag_i read from the ledger, not recomputed)

and never sends μ itself: with coefficients far wider than the digests,
``μ mod c_1`` would hand out individual block digests. Instead it draws a
secret ``r``, commits to ``R = g^r mod N``, derives ``γ = H(fileId,
challengeRef, T, R)`` and sends ``μ' = r + γ·μ``. The verifier checks

    g^μ' == R · T^γ mod N    and    T == Π tag_i^c_i mod N

``r`` is drawn from a range 2^128 times wider than ``γ·μ`` can reach, so μ'
is statistically independent of the digests.
"""

import secrets
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .arithmetic import modpow
from .challenge import Challenge
from .errors import ChallengeReplayed, EmptyBlock, MissingBlock, MissingTag, RandomnessUnavailable
from .hashing import canonicalize, sha256_hex
from .params import ModulusParameters, parse_hex_int, to_hex
from .tags import digest_block

BlockFetcher = Callable[[str, int], Optional[bytes]]
TagFetcher = Callable[[str, int], Optional[int]]

# γ is in [1, 2^MASK_HASH_BITS]; r has MASK_SLACK_BITS of headroom over γ·μ.
MASK_HASH_BITS = 128
MASK_SLACK_BITS = 128


@dataclass(frozen=True)
class Proof:
    """Aggregated, masked response to exactly one challenge."""
    file_id: str
    challenge_ref: str
    mu: int
    aggregated_tag: int
    commitment: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "challengeRef": self.challenge_ref,
            "mu": to_hex(self.mu),
            "T": to_hex(self.aggregated_tag),
            "R": to_hex(self.commitment),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proof":
        return cls(
            file_id=data["fileId"],
            challenge_ref=data["challengeRef"],
            mu=parse_hex_int(data["mu"], "mu"),
            aggregated_tag=parse_hex_int(data["T"], "T"),
            commitment=parse_hex_int(data["R"], "R"),
        )

    def proof_hash(self) -> str:
        """Hash anchored on the ledger in place of the raw proof."""
        return sha256_hex(canonicalize(self.to_dict()))


def combined_bound(params: ModulusParameters, challenge_size: int) -> int:
    """Exclusive upper bound for the unmasked sum ``Σ c_i · m_i``."""
    return challenge_size * (params.n - 1) ** 2 + 1


def mask_range(params: ModulusParameters, challenge_size: int) -> int:
    """The secret mask ``r`` is drawn uniformly from ``[0, mask_range)``."""
    return combined_bound(params, challenge_size) << (MASK_HASH_BITS + MASK_SLACK_BITS)


def mu_bound(params: ModulusParameters, challenge_size: int) -> int:
    """Exclusive public upper bound for the masked μ on a ``challenge_size``-item challenge."""
    return mask_range(params, challenge_size) + (combined_bound(params, challenge_size) << MASK_HASH_BITS)


def mask_coefficient(file_id: str, challenge_ref: str, aggregated_tag: int, commitment: int) -> int:
    """γ for a proof, bound to its file, challenge, aggregated tag and commitment."""
    digest = sha256_hex(canonicalize({
        "fileId": file_id,
        "challengeRef": challenge_ref,
        "T": to_hex(aggregated_tag),
        "R": to_hex(commitment),
    }))
    return int(digest[:MASK_HASH_BITS // 4], 16) + 1


def _draw_mask(limit: int) -> int:
    try:
        return secrets.randbelow(limit)
    except (NotImplementedError, OSError) as e:
        raise RandomnessUnavailable(f"OS random source failed: {e}") from e


def _fetch_block(block_fetcher: BlockFetcher, file_id: str, block_index: int) -> bytes:
    try:
        data = block_fetcher(file_id, block_index)
    except (KeyError, FileNotFoundError) as e:
        raise MissingBlock(file_id, block_index) from e
    if data is None:
        raise MissingBlock(file_id, block_index)
    return data


def generate_proof(
    challenge: Challenge,
    block_fetcher: BlockFetcher,
    tag_fetcher: TagFetcher,
    params: ModulusParameters,
) -> Proof:
    """
    Answer a challenge.

    Raises:
        MissingBlock: a challenged block cannot be fetched (or is empty)
        MissingTag: a challenged block has no anchored tag
        RandomnessUnavailable: the mask cannot be drawn
    """
    file_id = challenge.file_id
    mu = 0
    aggregated = 1 % params.n

    for item in challenge.items:
        data = _fetch_block(block_fetcher, file_id, item.block_index)
        try:
            m = digest_block(file_id, item.block_index, data, params)
        except EmptyBlock as e:
            raise MissingBlock(file_id, item.block_index) from e
        mu += item.coefficient * m

        tag_value = tag_fetcher(file_id, item.block_index)
        if tag_value is None:
            raise MissingTag(file_id, item.block_index)
        aggregated = aggregated * modpow(tag_value, item.coefficient, params.n) % params.n

    limit = mask_range(params, len(challenge))
    r = _draw_mask(limit)
    commitment = params.g_pow(r, limit.bit_length())
    gamma = mask_coefficient(file_id, challenge.challenge_id, aggregated, commitment)
    return Proof(
        file_id=file_id,
        challenge_ref=challenge.challenge_id,
        mu=r + gamma * mu,
        aggregated_tag=aggregated,
        commitment=commitment,
    )


class Prover:
    """
    Storage-node prover that answers each challenge id at most once.

    The lock guards only the consumed-id set; block and tag fetches run
    outside it.
    """

    def __init__(
        self,
        params: ModulusParameters,
        block_fetcher: BlockFetcher,
        tag_fetcher: TagFetcher,
        max_remembered: int = 100_000,
    ):
        self.params = params
        self._block_fetcher = block_fetcher
        self._tag_fetcher = tag_fetcher
        self._answered: "OrderedDict[str, None]" = OrderedDict()
        self._max_remembered = max_remembered
        self._lock = threading.Lock()

    def _consume(self, challenge_id: str) -> None:
        with self._lock:
            if challenge_id in self._answered:
                raise ChallengeReplayed(challenge_id)
            self._answered[challenge_id] = None
            while len(self._answered) > self._max_remembered:
                self._answered.popitem(last=False)

    def respond(self, challenge: Challenge) -> Proof:
        self._consume(challenge.challenge_id)
        return generate_proof(challenge, self._block_fetcher, self._tag_fetcher, self.params)

    __call__ = respond
