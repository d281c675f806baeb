from __future__ import annotations

from typing import List, Optional, Sequence

from .bits import BitsLike, to_bits
from .options import AuthenticationMode
from .random_source import RandomSource

MAX_TAG_BITS = 32
SESSION_SECRET_BITS = 64


class Authenticator:
    """Keyed universal-hash MAC over the final key.

    Tag bit ``i`` is the XOR of ``key[(i + j) mod n]`` for every set bit ``j``
    of the secret. Not an HMAC: it only binds the key to the pre-shared
    secret inside the simulation.
    """

    def __init__(self, secret: BitsLike):
        self.secret = tuple(to_bits(secret))
        if not self.secret:
            raise ValueError("authentication secret must not be empty")

    @classmethod
    def for_session(
        cls,
        mode: AuthenticationMode,
        rng: RandomSource,
        pre_shared_secret: Optional[Sequence[int]] = None,
    ) -> Optional["Authenticator"]:
        if mode is AuthenticationMode.NONE:
            return None
        if pre_shared_secret is not None:
            return cls(pre_shared_secret)
        if mode is AuthenticationMode.STANDARD:
            raise ValueError("standard authentication requires a pre-shared secret")
        return cls([rng.bit() for _ in range(SESSION_SECRET_BITS)])

    @property
    def tag_length(self) -> int:
        return min(MAX_TAG_BITS, len(self.secret))

    def generate(self, key: Sequence[int]) -> List[int]:
        key = list(key)
        if not key:
            raise ValueError("cannot authenticate an empty key")
        taps = [j for j, bit in enumerate(self.secret) if bit]
        tag: List[int] = []
        for i in range(self.tag_length):
            bit = 0
            for j in taps:
                bit ^= key[(i + j) % len(key)]
            tag.append(bit)
        return tag

    def verify(self, key: Sequence[int], tag: Sequence[int]) -> bool:
        if not key:
            return False
        expected = self.generate(key)
        tag = list(tag)
        return len(tag) == len(expected) and all(a == b for a, b in zip(tag, expected))
