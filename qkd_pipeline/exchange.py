from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .channel import BB84_BASES, E91_RECEIVER_BASES, E91_SENDER_BASES, Basis, ChannelModel
from .eavesdropper import Eavesdropper
from .options import ProtocolVariant, QKDOptions
from .random_source import RandomSource

DECOY_PROBABILITY = 0.1


@dataclass(frozen=True)
class RoundRecord:
    index: int
    sender_basis: int
    receiver_basis: int
    sender_bit: int
    receiver_bit: int
    is_decoy: bool = False
    eve_intercepted: bool = False


@dataclass
class ExchangeTranscript:
    protocol: ProtocolVariant
    rounds: List[RoundRecord]
    sender_bases: Tuple[Basis, ...]
    receiver_bases: Tuple[Basis, ...]
    eve_information: float = 0.0
    phase_randomised: int = 0

    def __len__(self) -> int:
        return len(self.rounds)

    def decoy_count(self) -> int:
        return sum(1 for record in self.rounds if record.is_decoy)

    def intercepted_count(self) -> int:
        return sum(1 for record in self.rounds if record.eve_intercepted)

    def to_dataframe(self) -> "pandas.DataFrame":
        import pandas as pd

        rows: List[Dict[str, Any]] = []
        for record in self.rounds:
            rows.append(
                {
                    "Round": record.index,
                    "Sender basis": self.sender_bases[record.sender_basis].name,
                    "Receiver basis": self.receiver_bases[record.receiver_basis].name,
                    "Sender bit": record.sender_bit,
                    "Receiver bit": record.receiver_bit,
                    "Decoy": record.is_decoy,
                    "Eve": record.eve_intercepted,
                }
            )
        return pd.DataFrame(rows)


def bases_for(options: QKDOptions) -> Tuple[Tuple[Basis, ...], Tuple[Basis, ...]]:
    if options.is_entanglement_based:
        return E91_SENDER_BASES, E91_RECEIVER_BASES
    bases = BB84_BASES[: options.basis_count]
    return bases, bases


class ExchangeOrchestrator:
    def __init__(
        self,
        options: QKDOptions,
        channel: ChannelModel,
        rng: RandomSource,
        eavesdropper: Optional[Eavesdropper] = None,
    ):
        self.options = options
        self.channel = channel
        self.rng = rng
        self.eavesdropper = eavesdropper
        self.sender_bases, self.receiver_bases = bases_for(options)
        self._phase_randomised = 0

    def run(self, round_count: int) -> ExchangeTranscript:
        if round_count <= 0:
            raise ValueError("round_count must be positive")
        if self.eavesdropper is not None:
            self.eavesdropper.reset()
        self._phase_randomised = 0

        exchange_round = self._entangled_round if self.options.is_entanglement_based else self._prepared_round
        rounds = [exchange_round(index) for index in range(round_count)]

        return ExchangeTranscript(
            protocol=self.options.protocol,
            rounds=rounds,
            sender_bases=self.sender_bases,
            receiver_bases=self.receiver_bases,
            eve_information=self.eavesdropper.information_gained if self.eavesdropper else 0.0,
            phase_randomised=self._phase_randomised,
        )

    def _choose_basis(self, bases: Tuple[Basis, ...]) -> int:
        return self.rng.integer(0, len(bases))

    def _is_decoy(self) -> bool:
        return self.options.use_decoy_states and self.rng.uniform() < DECOY_PROBABILITY

    def _prepared_round(self, index: int) -> RoundRecord:
        sender_basis = self._choose_basis(self.sender_bases)
        sender_bit = self.rng.bit()
        is_decoy = self._is_decoy()
        receiver_basis = self._choose_basis(self.receiver_bases)

        state = self.channel.prepare(sender_bit, self.sender_bases[sender_basis])
        phase = self.options.use_noise_protection and self.rng.bit() == 1
        if phase:
            state = self.channel.phase_flip(state)
            self._phase_randomised += 1

        state, intercepted = self._intercept(state, self.sender_bases[sender_basis])
        state = self.channel.transmit(state)
        if phase:
            state = self.channel.phase_flip(state)

        receiver_bit = self.channel.measure(state, self.receiver_bases[receiver_basis])
        return RoundRecord(index, sender_basis, receiver_basis, sender_bit, receiver_bit, is_decoy, intercepted)

    def _entangled_round(self, index: int) -> RoundRecord:
        sender_basis = self._choose_basis(self.sender_bases)
        is_decoy = self._is_decoy()
        receiver_basis = self._choose_basis(self.receiver_bases)

        sender_bit, partner = self.channel.create_pair(self.sender_bases[sender_basis])
        partner, intercepted = self._intercept(partner, self.sender_bases[sender_basis])
        partner = self.channel.transmit(partner)

        receiver_bit = self.channel.measure(partner, self.receiver_bases[receiver_basis])
        return RoundRecord(index, sender_basis, receiver_basis, sender_bit, receiver_bit, is_decoy, intercepted)

    def _intercept(self, state, preparation_basis: Basis):
        if self.eavesdropper is None:
            return state, False
        return self.eavesdropper.intercept(state, preparation_basis)
