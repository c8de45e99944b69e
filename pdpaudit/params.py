"""
Public modulus parameters shared by every protocol component.

``N`` and ``g`` are provisioned out of band, loaded once at process start and
passed explicitly to the components that need them. The factorisation of
``N`` never enters this process.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .arithmetic import ladder_modpow, modpow
from .errors import InvalidModulus


def parse_hex_int(value: str, name: str = "value") -> int:
    """Parse a lowercase or uppercase hex string, with or without ``0x``."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a hex string")
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if not text:
        raise ValueError(f"{name} is empty")
    return int(text, 16)


def to_hex(value: int) -> str:
    """Encode a non-negative integer as lowercase hex without prefix."""
    if value < 0:
        raise ValueError("cannot hex-encode a negative integer")
    return format(value, "x")


@dataclass(frozen=True)
class ModulusParameters:
    """RSA-type modulus ``n`` and generator ``g``."""

    n: int
    g: int
    fixed_time: bool = False

    def __post_init__(self):
        if not isinstance(self.n, int) or self.n <= 1:
            raise InvalidModulus("N must be an integer greater than 1")
        if not isinstance(self.g, int) or not 1 < self.g < self.n:
            raise InvalidModulus("g must satisfy 1 < g < N")
        if math.gcd(self.g, self.n) != 1:
            raise InvalidModulus("g must be coprime to N")

    @property
    def bit_length(self) -> int:
        return self.n.bit_length()

    def exp(self, base: int, exponent: int, bit_length: Optional[int] = None) -> int:
        """
        Exponentiate mod N, using the fixed-time ladder when enabled.

        ``bit_length`` pins the ladder length for exponents bounded by a
        public value wider than N; it must cover ``exponent``.
        """
        if self.fixed_time:
            steps = bit_length if bit_length is not None else max(self.bit_length, exponent.bit_length())
            return ladder_modpow(base, exponent, self.n, steps)
        return modpow(base, exponent, self.n)

    def g_pow(self, exponent: int, bit_length: Optional[int] = None) -> int:
        return self.exp(self.g, exponent, bit_length)

    def to_dict(self) -> Dict[str, Any]:
        return {"N": to_hex(self.n), "g": to_hex(self.g)}

    @classmethod
    def from_hex(cls, n_hex: str, g_hex: str, fixed_time: bool = False) -> "ModulusParameters":
        try:
            n = parse_hex_int(n_hex, "N")
            g = parse_hex_int(g_hex, "g")
        except (TypeError, ValueError) as e:
            raise InvalidModulus(f"cannot parse modulus parameters: {e}") from e
        return cls(n=n, g=g, fixed_time=fixed_time)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], fixed_time: bool = False) -> "ModulusParameters":
        try:
            return cls.from_hex(data["N"], data["g"], fixed_time=fixed_time)
        except KeyError as e:
            raise InvalidModulus(f"missing modulus parameter {e.args[0]!r}") from e

    @classmethod
    def load(cls, path: str, fixed_time: bool = False) -> "ModulusParameters":
        """Load parameters from a trusted JSON file ``{"N": hex, "g": hex}``."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidModulus(f"cannot load modulus parameters from {path}: {e}") from e
        return cls.from_dict(data, fixed_time=fixed_time)
