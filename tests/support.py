"""Shared test vectors: moduli, deterministic blocks and a controllable clock."""

import hashlib
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import List

from cryptography.hazmat.primitives.asymmetric import rsa

from pdpaudit.params import ModulusParameters

# Product of the Mersenne primes 2^89 - 1 and 2^107 - 1.
SMALL_N = (2 ** 89 - 1) * (2 ** 107 - 1)
SMALL_PARAMS = ModulusParameters(n=SMALL_N, g=5)


@lru_cache(maxsize=None)
def rsa_params(bits: int = 2048, fixed_time: bool = False) -> ModulusParameters:
    """Fresh RSA modulus with g = 5, generated once per process."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    return ModulusParameters(n=key.public_key().public_numbers().n, g=5, fixed_time=fixed_time)


def make_blocks(count: int, size: int = 64, seed: str = "blocks") -> List[bytes]:
    """Deterministic pseudo-ciphertext blocks."""
    blocks = []
    for i in range(count):
        out = b""
        counter = 0
        while len(out) < size:
            out += hashlib.sha256(f"{seed}:{i}:{counter}".encode()).digest()
            counter += 1
        blocks.append(out[:size])
    return blocks


def flip_byte(data: bytes, position: int = 0) -> bytes:
    b = bytearray(data)
    b[position] ^= 0x01
    return bytes(b)


class SteppingClock:
    """Clock that moves by ``step`` on every call; a negative step runs backwards."""

    def __init__(self, start: datetime = None, step: timedelta = timedelta(seconds=1)):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current
