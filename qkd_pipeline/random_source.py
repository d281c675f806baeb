from __future__ import annotations

from itertools import cycle
from typing import Iterable, Optional, Protocol, runtime_checkable

from numpy.random import Generator, default_rng


@runtime_checkable
class RandomSource(Protocol):
    def bit(self) -> int:
        ...

    def integer(self, low: int, high: int) -> int:
        """Uniform integer in ``[low, high)``."""
        ...

    def uniform(self) -> float:
        """Uniform float in ``[0, 1)``."""
        ...


class NumpyRandomSource:
    def __init__(self, seed: Optional[int] = None, generator: Optional[Generator] = None):
        self._rng: Generator = generator if generator is not None else default_rng(seed)

    def bit(self) -> int:
        return int(self._rng.integers(0, 2))

    def integer(self, low: int, high: int) -> int:
        if high <= low:
            raise ValueError("high must be greater than low")
        return int(self._rng.integers(low, high))

    def uniform(self) -> float:
        return float(self._rng.random())

    def bits(self, count: int) -> list[int]:
        return [int(value) for value in self._rng.integers(0, 2, size=count)]

    def spawn(self) -> "NumpyRandomSource":
        """Independent child stream, safe to hand to another thread."""
        return NumpyRandomSource(generator=self._rng.spawn(1)[0])


class ScriptedRandomSource:
    """Replays fixed value streams, cycling each one when it runs out.

    Integers are folded into the requested range, so a script of ``[0]``
    always yields ``low``.
    """

    def __init__(
        self,
        bits: Iterable[int] = (0,),
        integers: Iterable[int] = (0,),
        uniforms: Iterable[float] = (0.5,),
    ):
        bits, integers, uniforms = list(bits), list(integers), list(uniforms)
        if not bits or not integers or not uniforms:
            raise ValueError("scripted streams must not be empty")
        if any(not 0.0 <= value < 1.0 for value in uniforms):
            raise ValueError("scripted uniforms must lie in [0, 1)")
        self._bits = cycle(int(bit) & 1 for bit in bits)
        self._integers = cycle(integers)
        self._uniforms = cycle(uniforms)
        self.calls = 0

    def bit(self) -> int:
        self.calls += 1
        return next(self._bits)

    def integer(self, low: int, high: int) -> int:
        if high <= low:
            raise ValueError("high must be greater than low")
        self.calls += 1
        return low + next(self._integers) % (high - low)

    def uniform(self) -> float:
        self.calls += 1
        return next(self._uniforms)
