from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from itertools import product
from typing import Dict, List, Optional, Sequence, Tuple

from .exchange import RoundRecord
from .options import ProtocolVariant, QKDOptions


class SiftAction(Enum):
    KEY = "key"
    SECURITY_TEST = "security_test"
    DISCARD = "discard"


@dataclass(frozen=True)
class SiftRule:
    action: SiftAction
    pair_index: Optional[int] = None
    invert_receiver: bool = False


DISCARD = SiftRule(SiftAction.DISCARD)

# (sender basis, receiver basis) for E1..E4 of S = E1 - E2 + E3 + E4.
CHSH_PAIRS: Tuple[Tuple[int, int], ...] = ((0, 2), (0, 1), (1, 2), (1, 1))
CHSH_SIGNS: Tuple[int, ...] = (1, -1, 1, 1)
E91_KEY_PAIRS: Tuple[Tuple[int, int], ...] = ((0, 0), (2, 2))


def rule_table(protocol: ProtocolVariant, basis_count: int) -> Dict[Tuple[int, int], SiftRule]:
    table = {pair: DISCARD for pair in product(range(basis_count), repeat=2)}
    if protocol is ProtocolVariant.E91:
        for pair in E91_KEY_PAIRS:
            table[pair] = SiftRule(SiftAction.KEY, invert_receiver=True)
        for index, pair in enumerate(CHSH_PAIRS):
            table[pair] = SiftRule(SiftAction.SECURITY_TEST, pair_index=index)
    else:
        for basis in range(basis_count):
            table[(basis, basis)] = SiftRule(SiftAction.KEY)
    return table


@dataclass
class SiftedKey:
    sender: List[int] = field(default_factory=list)
    receiver: List[int] = field(default_factory=list)
    positions: List[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(self.sender) != len(self.receiver):
            raise ValueError("Sifted keys must be of equal length")

    def __len__(self) -> int:
        return len(self.sender)

    def append(self, position: int, sender_bit: int, receiver_bit: int) -> None:
        self.positions.append(position)
        self.sender.append(sender_bit)
        self.receiver.append(receiver_bit)


@dataclass(frozen=True)
class SecurityTestSample:
    sender_basis: int
    receiver_basis: int
    sender_bit: int
    receiver_bit: int
    pair_index: Optional[int] = None
    is_decoy: bool = False

    @property
    def agrees(self) -> bool:
        return self.sender_bit == self.receiver_bit


@dataclass
class SiftingResult:
    sifted_key: SiftedKey
    security_samples: List[SecurityTestSample]
    decoy_samples: List[SecurityTestSample]
    pair_tallies: Dict[Tuple[int, int], List[int]]
    decoy_checked: int = 0
    decoy_errors: int = 0
    discarded: int = 0

    @property
    def sifted_length(self) -> int:
        return len(self.sifted_key)

    @property
    def decoy_error_rate(self) -> float:
        if self.decoy_checked == 0:
            return 0.0
        return self.decoy_errors / self.decoy_checked

    @property
    def test_sample_count(self) -> int:
        return len(self.security_samples) + len(self.decoy_samples)


class SiftingEngine:
    def __init__(self, protocol: ProtocolVariant, basis_count: int):
        self.protocol = protocol
        self.basis_count = basis_count
        self.rules = rule_table(protocol, basis_count)

    @classmethod
    def for_options(cls, options: QKDOptions) -> "SiftingEngine":
        return cls(options.protocol, options.basis_count)

    def rule_for(self, sender_basis: int, receiver_basis: int) -> SiftRule:
        try:
            return self.rules[(sender_basis, receiver_basis)]
        except KeyError:
            raise ValueError(f"Basis pair ({sender_basis}, {receiver_basis}) is outside the rule table") from None

    def sift(self, rounds: Sequence[RoundRecord]) -> SiftingResult:
        sifted = SiftedKey()
        samples: List[SecurityTestSample] = []
        decoys: List[SecurityTestSample] = []
        tallies = {pair: [0, 0] for pair in self.rules}
        decoy_checked = decoy_errors = discarded = 0

        for record in rounds:
            rule = self.rule_for(record.sender_basis, record.receiver_basis)
            receiver_bit = record.receiver_bit ^ 1 if rule.invert_receiver else record.receiver_bit

            if record.is_decoy:
                decoys.append(
                    SecurityTestSample(
                        record.sender_basis,
                        record.receiver_basis,
                        record.sender_bit,
                        record.receiver_bit,
                        rule.pair_index,
                        is_decoy=True,
                    )
                )
                if rule.action is SiftAction.KEY:
                    decoy_checked += 1
                    if receiver_bit != record.sender_bit:
                        decoy_errors += 1
                continue

            tally = tallies[(record.sender_basis, record.receiver_basis)]
            tally[0 if record.sender_bit == record.receiver_bit else 1] += 1

            if rule.action is SiftAction.KEY:
                sifted.append(record.index, record.sender_bit, receiver_bit)
            elif rule.action is SiftAction.SECURITY_TEST:
                samples.append(
                    SecurityTestSample(
                        record.sender_basis,
                        record.receiver_basis,
                        record.sender_bit,
                        record.receiver_bit,
                        rule.pair_index,
                    )
                )
            else:
                discarded += 1

        return SiftingResult(
            sifted_key=sifted,
            security_samples=samples,
            decoy_samples=decoys,
            pair_tallies=tallies,
            decoy_checked=decoy_checked,
            decoy_errors=decoy_errors,
            discarded=discarded,
        )
