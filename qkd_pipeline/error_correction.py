from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .bits import parity
from .random_source import RandomSource

DEFAULT_BLOCK_SIZES = (16, 8, 4, 2)
MIN_RECONCILIATION_LENGTH = 8
MAX_RECONCILABLE_ERROR_RATE = 0.15


@dataclass
class ReconciliationOutcome:
    corrected_key: List[int]
    leaked_bits: int = 0
    corrections: List[int] = field(default_factory=list)
    skipped: bool = False
    residual_errors: int = 0


class BlockParityReconciler:
    """Block-parity reconciliation over a descending list of block sizes.

    Every parity mismatch costs one correction event and one leaked bit. The
    bit to flip is found by bisecting the block's parity; with
    ``bisect=False`` a random position inside the block is flipped instead,
    which leaves blocks holding several errors under-corrected.
    """

    def __init__(
        self,
        block_sizes: Sequence[int] = DEFAULT_BLOCK_SIZES,
        bisect: bool = True,
        rng: Optional[RandomSource] = None,
    ):
        if not block_sizes:
            raise ValueError("block_sizes must not be empty")
        if any(size <= 0 for size in block_sizes):
            raise ValueError("block sizes must be positive")
        if not bisect and rng is None:
            raise ValueError("random-position correction needs a RandomSource")
        self.block_sizes = tuple(block_sizes)
        self.bisect = bisect
        self.rng = rng

    def reconcile(
        self,
        sender_key: Sequence[int],
        receiver_key: Sequence[int],
        estimated_error_rate: float,
    ) -> ReconciliationOutcome:
        if len(sender_key) != len(receiver_key):
            raise ValueError("Keys must be of equal length for reconciliation")

        alice = list(sender_key)
        bob = list(receiver_key)
        length = len(alice)

        if length < MIN_RECONCILIATION_LENGTH or estimated_error_rate > MAX_RECONCILABLE_ERROR_RATE:
            return ReconciliationOutcome(
                corrected_key=bob,
                skipped=True,
                residual_errors=self._residual(alice, bob),
            )

        corrections: List[int] = []
        leaked_bits = 0

        for block in self.block_sizes:
            start = 0
            while start < length:
                end = min(start + block, length)
                if parity(alice, start, end) != parity(bob, start, end):
                    idx = self._locate(alice, bob, start, end)
                    bob[idx] ^= 1
                    corrections.append(idx)
                    leaked_bits += 1
                start = end

        return ReconciliationOutcome(
            corrected_key=bob,
            leaked_bits=leaked_bits,
            corrections=corrections,
            residual_errors=self._residual(alice, bob),
        )

    def _locate(self, alice: List[int], bob: List[int], start: int, end: int) -> int:
        if not self.bisect:
            return start + self.rng.integer(0, end - start)
        return self._binary_search(alice, bob, start, end)

    @staticmethod
    def _binary_search(alice: List[int], bob: List[int], start: int, end: int) -> int:
        while end - start > 1:
            mid = (start + end) // 2
            if parity(alice, start, mid) != parity(bob, start, mid):
                end = mid
            else:
                start = mid
        return start

    @staticmethod
    def _residual(alice: Sequence[int], bob: Sequence[int]) -> int:
        return sum(1 for a, b in zip(alice, bob) if a != b)
