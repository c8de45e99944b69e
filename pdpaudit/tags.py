"""
Homomorphic verifiable tags.

A block's tag is ``g^m mod N`` where ``m`` is the block digest. Because
``Π tag_i^c_i = g^(Σ c_i·m_i)``, tags for a challenged subset can be
combined and checked against a single aggregate exponent without the
verifier seeing any block.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple, Union

from .errors import EmptyBlock
from .hashing import block_digest
from .params import ModulusParameters, parse_hex_int, to_hex

MAX_BLOCK_INDEX = 2 ** 64 - 1


@dataclass(frozen=True)
class Tag:
    """Tag for one block of one file."""
    file_id: str
    block_index: int
    tag_value: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileId": self.file_id,
            "blockIndex": self.block_index,
            "tagValue": to_hex(self.tag_value),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tag":
        return cls(
            file_id=data["fileId"],
            block_index=int(data["blockIndex"]),
            tag_value=parse_hex_int(data["tagValue"], "tagValue"),
        )


def validate_block_ref(file_id: str, block_index: int) -> None:
    if not isinstance(file_id, str) or not file_id:
        raise ValueError("file_id must be a non-empty string")
    if not isinstance(block_index, int) or isinstance(block_index, bool):
        raise TypeError("block_index must be an int")
    if not 0 <= block_index <= MAX_BLOCK_INDEX:
        raise ValueError(f"block_index out of range: {block_index}")


def digest_block(file_id: str, block_index: int, ciphertext: bytes, params: ModulusParameters) -> int:
    """Exponent-domain digest ``m`` of a block."""
    validate_block_ref(file_id, block_index)
    if not ciphertext:
        raise EmptyBlock(file_id, block_index)
    return block_digest(file_id, block_index, bytes(ciphertext), params.n)


def generate_tag(file_id: str, block_index: int, ciphertext: bytes, params: ModulusParameters) -> Tag:
    """
    Compute the tag for one block.

    Pure and deterministic: the same block always yields the same tag, so
    re-tagging is idempotent. Persisting the tag is the ledger's job.

    Raises:
        EmptyBlock: if ``ciphertext`` is empty
    """
    m = digest_block(file_id, block_index, ciphertext, params)
    return Tag(file_id=file_id, block_index=block_index, tag_value=params.g_pow(m))


BlockInput = Union[Sequence[bytes], Mapping[int, bytes]]


def iter_blocks(blocks: BlockInput) -> Iterable[Tuple[int, bytes]]:
    """Yield ``(index, ciphertext)`` from a list (positional) or an index mapping."""
    if isinstance(blocks, Mapping):
        return sorted(blocks.items())
    return enumerate(blocks)


def generate_tags(file_id: str, blocks: BlockInput, params: ModulusParameters) -> List[Tag]:
    """Tag every block of a file. Fails on the first empty block."""
    return [generate_tag(file_id, index, data, params) for index, data in iter_blocks(blocks)]
