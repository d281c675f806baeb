"""Eavesdropping strategies applied between preparation and the receiver.

Each strategy exposes ``intercept(state, preparation_basis) -> (state, touched)``
and keeps running diagnostics (``intercepted``, ``information_gained``) that
the exchange summarises. Strategies draw every random choice from the shared
:class:`RandomSource`, so a fixed stream reproduces the same attack.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Optional, Sequence, Tuple

from .channel import Basis, ChannelModel
from .random_source import RandomSource

COLLECTIVE_DISTURBANCE = 0.30
COLLECTIVE_LEAK_BITS = 0.30

_TWIRL = (None, "X", "Y", "Z")


class EavesdropStrategy(IntEnum):
    INTERCEPT_RESEND = 0
    COLLECTIVE = 1
    COHERENT = 2


class Eavesdropper(ABC):
    strategy: EavesdropStrategy

    def __init__(
        self,
        channel: ChannelModel,
        rng: RandomSource,
        bases: Sequence[Basis],
        intercept_probability: float = 1.0,
    ):
        if not bases:
            raise ValueError("an eavesdropper needs at least one basis")
        if not 0.0 <= intercept_probability <= 1.0:
            raise ValueError("intercept_probability must be between 0 and 1")
        self.channel = channel
        self.rng = rng
        self.bases = tuple(bases)
        self.intercept_probability = intercept_probability
        self.reset()

    def reset(self) -> None:
        self.intercepted = 0
        self.information_gained = 0.0

    def intercept(self, state, preparation_basis: Basis) -> Tuple[object, bool]:
        if self.intercept_probability < 1.0 and self.rng.uniform() >= self.intercept_probability:
            self._pass(preparation_basis)
            return state, False
        self.intercepted += 1
        return self._attack(state, preparation_basis), True

    def _pass(self, preparation_basis: Basis) -> None:
        pass

    @abstractmethod
    def _attack(self, state, preparation_basis: Basis):
        ...

    def _measure_and_resend(self, state, basis: Basis):
        outcome = self.channel.measure(state, basis)
        return self.channel.prepare(outcome, basis)


class InterceptResendEavesdropper(Eavesdropper):
    """Measure in a random basis and re-prepare the observed state.

    On a two-basis protocol the wrong guess happens half the time and then
    randomises the receiver's outcome, hence a 25% error on sifted rounds.
    """

    strategy = EavesdropStrategy.INTERCEPT_RESEND

    def _attack(self, state, preparation_basis: Basis):
        basis = self.bases[self.rng.integer(0, len(self.bases))]
        if basis.aligned_with(preparation_basis):
            self.information_gained += 1.0
        return self._measure_and_resend(state, basis)

    @property
    def expected_error_rate(self) -> float:
        return self.intercept_probability * 0.5 * (1 - 1 / len(self.bases))


class CollectiveEavesdropper(Eavesdropper):
    """Weakly couples a probe to every pulse.

    With a fixed probability the pulse is fully depolarised (a uniform Pauli
    twirl), which costs the same error in every basis; each touched pulse
    leaks a bounded amount of information.
    """

    strategy = EavesdropStrategy.COLLECTIVE

    def __init__(self, *args, disturbance: float = COLLECTIVE_DISTURBANCE, **kwargs):
        if not 0.0 <= disturbance <= 1.0:
            raise ValueError("disturbance must be between 0 and 1")
        self.disturbance = disturbance
        super().__init__(*args, **kwargs)

    def _attack(self, state, preparation_basis: Basis):
        self.information_gained += COLLECTIVE_LEAK_BITS
        if self.rng.uniform() >= self.disturbance:
            return state
        pauli = _TWIRL[self.rng.integer(0, len(_TWIRL))]
        if pauli is None:
            return state
        return self.channel.apply_pauli(state, pauli)

    @property
    def expected_error_rate(self) -> float:
        return self.intercept_probability * self.disturbance * 0.5


class CoherentEavesdropper(Eavesdropper):
    """Measures each pulse in the basis used for the previous round.

    Rounds that repeat the previous basis are read without disturbance; a
    basis change between adjacent rounds is where the errors appear.
    """

    strategy = EavesdropStrategy.COHERENT

    def reset(self) -> None:
        super().reset()
        self._previous: Optional[Basis] = None

    def _pass(self, preparation_basis: Basis) -> None:
        self._previous = preparation_basis

    def _attack(self, state, preparation_basis: Basis):
        previous, self._previous = self._previous, preparation_basis
        if previous is None:
            return state
        if previous.aligned_with(preparation_basis):
            self.information_gained += 1.0
        return self._measure_and_resend(state, previous)


EAVESDROPPERS = {
    EavesdropStrategy.INTERCEPT_RESEND: InterceptResendEavesdropper,
    EavesdropStrategy.COLLECTIVE: CollectiveEavesdropper,
    EavesdropStrategy.COHERENT: CoherentEavesdropper,
}


def make_eavesdropper(
    strategy: int,
    channel: ChannelModel,
    rng: RandomSource,
    bases: Sequence[Basis],
    **kwargs,
) -> Eavesdropper:
    try:
        cls = EAVESDROPPERS[EavesdropStrategy(strategy)]
    except ValueError:
        raise ValueError(f"Unknown eavesdropping strategy: {strategy!r}") from None
    return cls(channel, rng, bases, **kwargs)
