"""
Block storage used by the storage node.

Blocks are opaque ciphertext keyed by ``(file_id, block_index)``. The store
is a collaborator of the protocol, not part of it: the prover only needs
``get_block`` as its block fetcher.
"""

import hashlib
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple


class BlockStore(ABC):

    @abstractmethod
    def put_block(self, file_id: str, block_index: int, data: bytes) -> None:
        pass

    @abstractmethod
    def get_block(self, file_id: str, block_index: int) -> Optional[bytes]:
        """Return the block, or None if it is not stored."""
        pass

    @abstractmethod
    def list_indices(self, file_id: str) -> List[int]:
        pass

    @abstractmethod
    def delete_block(self, file_id: str, block_index: int) -> bool:
        pass


class InMemoryBlockStore(BlockStore):

    def __init__(self):
        self._blocks: Dict[Tuple[str, int], bytes] = {}
        self._lock = threading.Lock()

    def put_block(self, file_id: str, block_index: int, data: bytes) -> None:
        with self._lock:
            self._blocks[(file_id, block_index)] = bytes(data)

    def get_block(self, file_id: str, block_index: int) -> Optional[bytes]:
        with self._lock:
            return self._blocks.get((file_id, block_index))

    def list_indices(self, file_id: str) -> List[int]:
        with self._lock:
            return sorted(i for f, i in self._blocks if f == file_id)

    def delete_block(self, file_id: str, block_index: int) -> bool:
        with self._lock:
            return self._blocks.pop((file_id, block_index), None) is not None


class FileSystemBlockStore(BlockStore):
    """
    One file per block under ``<root>/<sha256(file_id)>/<index>.block``.

    The directory name is hashed so arbitrary file ids are path-safe.
    """

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _file_dir(self, file_id: str) -> Path:
        return self.root / hashlib.sha256(file_id.encode("utf-8")).hexdigest()

    def _block_path(self, file_id: str, block_index: int) -> Path:
        return self._file_dir(file_id) / f"{block_index}.block"

    def put_block(self, file_id: str, block_index: int, data: bytes) -> None:
        path = self._block_path(file_id, block_index)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)

    def get_block(self, file_id: str, block_index: int) -> Optional[bytes]:
        try:
            with open(self._block_path(file_id, block_index), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def list_indices(self, file_id: str) -> List[int]:
        d = self._file_dir(file_id)
        if not d.exists():
            return []
        return sorted(int(p.stem) for p in d.glob("*.block"))

    def delete_block(self, file_id: str, block_index: int) -> bool:
        try:
            self._block_path(file_id, block_index).unlink()
            return True
        except FileNotFoundError:
            return False
