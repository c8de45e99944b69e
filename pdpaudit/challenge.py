"""
Verifier-side challenge construction.

A challenge names a random subset of tagged blocks and gives each a fresh
random coefficient in ``[1, N)``. Coefficients are drawn inside
``build_challenge`` on every call; there is no API that accepts
caller-chosen coefficients for a new round.
"""

import random
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import NoAuditableBlocks, RandomnessUnavailable
from .params import ModulusParameters, parse_hex_int, to_hex


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class ChallengeItem:
    block_index: int
    coefficient: int

    def to_dict(self) -> Dict[str, Any]:
        return {"blockIndex": self.block_index, "coefficient": to_hex(self.coefficient)}


@dataclass(frozen=True)
class Challenge:
    """One audit round: a file, a challenge id, and ordered (index, coefficient) pairs."""
    file_id: str
    challenge_id: str
    items: Tuple[ChallengeItem, ...]
    issued_at: str = field(default_factory=utc_now_iso)

    def __post_init__(self):
        indices = [item.block_index for item in self.items]
        if len(set(indices)) != len(indices):
            raise ValueError("challenge indices must be distinct")
        if any(item.coefficient <= 0 for item in self.items):
            raise ValueError("challenge coefficients must be positive")

    @property
    def indices(self) -> List[int]:
        return [item.block_index for item in self.items]

    @property
    def coefficients(self) -> List[int]:
        return [item.coefficient for item in self.items]

    def __len__(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "challengeId": self.challenge_id,
            "issuedAt": self.issued_at,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_pairs(
        cls,
        file_id: str,
        pairs: Iterable[Tuple[int, int]],
        challenge_id: Optional[str] = None,
    ) -> "Challenge":
        """Build a challenge from explicit pairs (replaying a recorded round, tests)."""
        items = tuple(ChallengeItem(block_index=i, coefficient=c) for i, c in pairs)
        return cls(file_id=file_id, challenge_id=challenge_id or secrets.token_hex(16), items=items)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Challenge":
        items = tuple(
            ChallengeItem(
                block_index=int(item["blockIndex"]),
                coefficient=parse_hex_int(item["coefficient"], "coefficient"),
            )
            for item in data["items"]
        )
        return cls(
            file_id=data["fileId"],
            challenge_id=data["challengeId"],
            items=items,
            issued_at=data.get("issuedAt") or utc_now_iso(),
        )


def _secure_source(random_source: Optional[random.Random]) -> random.Random:
    if random_source is None:
        return secrets.SystemRandom()
    if not isinstance(random_source, random.SystemRandom):
        raise RandomnessUnavailable("challenge randomness must come from an OS-backed SystemRandom")
    return random_source


def build_challenge(
    file_id: str,
    available_indices: Iterable[int],
    sample_size: int,
    params: ModulusParameters,
    random_source: Optional[random.Random] = None,
) -> Challenge:
    """
    Sample ``min(sample_size, |available_indices|)`` distinct indices and draw
    a coefficient in ``[1, N)`` for each.

    Raises:
        NoAuditableBlocks: if ``available_indices`` is empty
        RandomnessUnavailable: if the OS random source is missing or rejected
    """
    if sample_size < 1:
        raise ValueError("sample_size must be at least 1")
    population = sorted(set(available_indices))
    if not population:
        raise NoAuditableBlocks(file_id)

    rng = _secure_source(random_source)
    k = min(sample_size, len(population))
    try:
        chosen = sorted(rng.sample(population, k))
        items = tuple(ChallengeItem(block_index=i, coefficient=rng.randrange(1, params.n)) for i in chosen)
        challenge_id = format(rng.getrandbits(128), "032x")
    except (NotImplementedError, OSError) as e:
        raise RandomnessUnavailable(f"OS random source failed: {e}") from e

    return Challenge(file_id=file_id, challenge_id=challenge_id, items=items)
