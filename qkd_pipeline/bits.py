from __future__ import annotations

from typing import Iterable, List, Sequence, Union

import numpy as np

BitsLike = Union[bytes, bytearray, Sequence[int], Sequence[bool], str]


def to_bits(value: BitsLike) -> List[int]:
    """Normalise bytes, bit strings and bool/int sequences into a list of 0/1.

    Bytes are unpacked least-significant bit first, matching :func:`pack_bits`.
    """
    if isinstance(value, (bytes, bytearray)):
        return unpack_bits(bytes(value))
    if isinstance(value, str):
        if any(char not in "01" for char in value):
            raise ValueError("bit strings may only contain '0' and '1'")
        return [int(char) for char in value]
    bits = [int(bit) for bit in value]
    if any(bit not in (0, 1) for bit in bits):
        raise ValueError("bit sequences may only contain 0 and 1")
    return bits


def error_rate(bits_a: Sequence[int], bits_b: Sequence[int]) -> float:
    if len(bits_a) != len(bits_b):
        raise ValueError("Bit sequences must be of equal length")
    if not bits_a:
        return 0.0
    mismatches = sum(1 for a, b in zip(bits_a, bits_b) if a != b)
    return mismatches / len(bits_a)


def parity(bits: Sequence[int], start: int = 0, end: int | None = None) -> int:
    segment = bits[start:end]
    value = 0
    for bit in segment:
        value ^= bit
    return value


def pack_bits(bits: Iterable[int]) -> bytes:
    array = np.asarray(list(bits), dtype=np.uint8)
    if array.size == 0:
        return b""
    return np.packbits(array, bitorder="little").tobytes()


def unpack_bits(data: bytes, count: int | None = None) -> List[int]:
    array = np.unpackbits(np.frombuffer(data, dtype=np.uint8), bitorder="little")
    if count is not None:
        array = array[:count]
    return [int(bit) for bit in array]
