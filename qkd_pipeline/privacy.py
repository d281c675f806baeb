from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .random_source import RandomSource
from .security import security_factor

SAFETY_MARGIN_BITS = 4
MAX_HASH_TAPS = 6
SEED_UPPER_BOUND = 2**31 - 1


@dataclass
class PrivacyAmplificationResult:
    final_key: List[int]
    seed: int
    target_length: int
    discarded_bits: int
    eve_information: float


def bb84_eve_information(raw_length: int, leaked_bits: int, qber: float) -> float:
    return leaked_bits + raw_length * qber * 2


def e91_eve_information(raw_length: int, leaked_bits: int, chsh: float) -> float:
    return leaked_bits + raw_length * (1 - security_factor(chsh)) * 0.5


class PrivacyAmplifier:
    """Shortens a reconciled key with a seeded XOR hash.

    Each output bit folds up to six source positions picked by
    ``seed * (i + 1) * (j + 1) mod n``. This is a light stand-in for a
    Toeplitz extractor, not a proven one.
    """

    def __init__(self, rng: RandomSource, safety_margin: int = SAFETY_MARGIN_BITS):
        if safety_margin < 0:
            raise ValueError("safety_margin must be non-negative")
        self.rng = rng
        self.safety_margin = safety_margin

    def secure_length(self, raw_length: int, requested_length: int, eve_information: float) -> int:
        if raw_length <= 0:
            raise ValueError("privacy amplification needs a non-empty key")
        if requested_length <= 0:
            raise ValueError("requested_length must be positive")
        usable = raw_length - math.ceil(eve_information) - self.safety_margin
        return max(1, min(requested_length, usable))

    def draw_seed(self) -> int:
        return self.rng.integer(1, SEED_UPPER_BOUND)

    @staticmethod
    def compress(key: Sequence[int], length: int, seed: int) -> List[int]:
        raw_length = len(key)
        taps = min(MAX_HASH_TAPS - 1, raw_length - 1) + 1
        output: List[int] = []
        for i in range(length):
            bit = 0
            for j in range(taps):
                bit ^= key[(seed * (i + 1) * (j + 1)) % raw_length]
            output.append(bit)
        return output

    def apply(
        self,
        key: Sequence[int],
        requested_length: int,
        eve_information: float,
        seed: Optional[int] = None,
    ) -> PrivacyAmplificationResult:
        target_length = self.secure_length(len(key), requested_length, eve_information)
        if seed is None:
            seed = self.draw_seed()
        final_key = self.compress(key, target_length, seed)
        return PrivacyAmplificationResult(
            final_key=final_key,
            seed=seed,
            target_length=target_length,
            discarded_bits=max(len(key) - target_length, 0),
            eve_information=eve_information,
        )
