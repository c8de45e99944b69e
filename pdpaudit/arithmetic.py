"""
Modular arithmetic kernel.

All operands are Python integers, so intermediate products never wrap.
``modpow`` uses the interpreter's built-in exponentiation, which branches on
exponent bits. Deployments that tag sensitive content should enable the
fixed-time ladder (``ModulusParameters.fixed_time``), which performs the same
sequence of multiplications for every exponent of a given bit length. The
interpreter's big-integer multiply is itself not constant-time; the ladder
only removes the exponent-dependent control flow.
"""

from typing import Iterable, Optional, Tuple

from .errors import InvalidModulus


def _check_modulus(modulus: int) -> None:
    if not isinstance(modulus, int) or isinstance(modulus, bool) or modulus <= 1:
        raise InvalidModulus(f"modulus must be an integer greater than 1, got {modulus!r}")


def _check_operand(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def modpow(base: int, exponent: int, modulus: int) -> int:
    """Compute ``base ** exponent mod modulus`` for non-negative operands."""
    _check_modulus(modulus)
    _check_operand("base", base)
    _check_operand("exponent", exponent)
    return pow(base, exponent, modulus)


def ladder_modpow(base: int, exponent: int, modulus: int, bit_length: Optional[int] = None) -> int:
    """
    Montgomery-ladder exponentiation with a fixed iteration count.

    Each step computes both candidate products and selects one by index, so
    the work done does not depend on the exponent bits. ``bit_length`` pins
    the number of steps; it defaults to the modulus bit length and must cover
    the exponent.
    """
    _check_modulus(modulus)
    _check_operand("base", base)
    _check_operand("exponent", exponent)

    steps = bit_length if bit_length is not None else modulus.bit_length()
    if exponent.bit_length() > steps:
        raise ValueError("exponent is wider than the fixed ladder length")

    r0, r1 = 1 % modulus, base % modulus
    for i in range(steps - 1, -1, -1):
        bit = (exponent >> i) & 1
        both = r0 * r1 % modulus
        pairs = ((r0 * r0 % modulus, both), (both, r1 * r1 % modulus))
        r0, r1 = pairs[bit]
    return r0


def modmul(a: int, b: int, modulus: int) -> int:
    """Compute ``a * b mod modulus``."""
    _check_modulus(modulus)
    _check_operand("a", a)
    _check_operand("b", b)
    return (a * b) % modulus


def multi_modpow(terms: Iterable[Tuple[int, int]], modulus: int) -> int:
    """Compute the product of ``base ** exponent`` over ``terms``, mod ``modulus``."""
    _check_modulus(modulus)
    acc = 1 % modulus
    for base, exponent in terms:
        acc = (acc * modpow(base, exponent, modulus)) % modulus
    return acc
