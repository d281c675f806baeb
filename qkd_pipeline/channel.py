from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np
from qiskit import QuantumCircuit
from qiskit_aer import AerSimulator

from .noise import TRANSIT_GATE, NoiseChannel, NoiseModelFactory, PauliNoiseSampler
from .random_source import RandomSource

PAULIS = ("X", "Y", "Z")


@dataclass(frozen=True)
class Basis:
    """A measurement direction on the Bloch sphere (polar ``theta``, azimuth ``phi``)."""

    name: str
    theta: float
    phi: float = 0.0

    @property
    def vector(self) -> np.ndarray:
        return np.array(
            [
                math.sin(self.theta) * math.cos(self.phi),
                math.sin(self.theta) * math.sin(self.phi),
                math.cos(self.theta),
            ]
        )

    def aligned_with(self, other: "Basis") -> bool:
        return abs(float(np.dot(self.vector, other.vector))) > 1 - 1e-9


BASIS_Z = Basis("Z", 0.0)
BASIS_X = Basis("X", math.pi / 2)
BASIS_Y = Basis("Y", math.pi / 2, math.pi / 2)

BB84_BASES: Tuple[Basis, ...] = (BASIS_Z, BASIS_X, BASIS_Y)

# Spin directions in the X-Z plane. Index 0 and 2 coincide between the two
# parties (key generation); the remaining combinations at 45 and 135 degrees
# saturate the CHSH bound.
E91_SENDER_BASES: Tuple[Basis, ...] = (
    Basis("A0", 0.0),
    Basis("A1", math.pi / 2),
    Basis("A2", math.pi / 4),
)
E91_RECEIVER_BASES: Tuple[Basis, ...] = (
    Basis("B0", 0.0),
    Basis("B1", 3 * math.pi / 4),
    Basis("B2", math.pi / 4),
)


def _snap(probability: float) -> float:
    if probability < 1e-12:
        return 0.0
    if probability > 1 - 1e-12:
        return 1.0
    return probability


class ChannelModel(ABC):
    """One qubit (or one half of an entangled pair) from preparation to measurement.

    States are opaque values owned by the concrete channel; nothing is
    allocated or released between rounds.
    """

    def __init__(self, rng: RandomSource, noise: Optional[NoiseChannel] = None):
        self.rng = rng
        self.noise = noise or NoiseChannel()

    @abstractmethod
    def prepare(self, bit: int, basis: Basis):
        ...

    @abstractmethod
    def apply_pauli(self, state, pauli: str):
        ...

    @abstractmethod
    def transmit(self, state):
        ...

    @abstractmethod
    def measure(self, state, basis: Basis) -> int:
        ...

    def phase_flip(self, state):
        return self.apply_pauli(state, "Z")

    def measure_prepared(self, bit: int, preparation_basis: Basis, measurement_basis: Basis) -> int:
        return self.measure(self.transmit(self.prepare(bit, preparation_basis)), measurement_basis)

    def create_pair(self, basis: Basis):
        """Measure the sender half of a singlet along ``basis``.

        Returns the sender's outcome and the collapsed partner state, which
        points the opposite way along the same direction.
        """
        outcome = self.rng.bit()
        return outcome, self.prepare(outcome ^ 1, basis)


class ProbabilisticChannel(ChannelModel):
    def __init__(self, rng: RandomSource, noise: Optional[NoiseChannel] = None):
        super().__init__(rng, noise)
        self._sampler = PauliNoiseSampler(self.noise)

    def prepare(self, bit: int, basis: Basis) -> np.ndarray:
        return (1 - 2 * bit) * basis.vector

    def apply_pauli(self, state: np.ndarray, pauli: str) -> np.ndarray:
        if pauli not in PAULIS:
            raise ValueError(f"Unknown Pauli operator '{pauli}'")
        flipped = state.copy()
        for axis, name in enumerate(PAULIS):
            if name != pauli:
                flipped[axis] = -flipped[axis]
        return flipped

    def transmit(self, state: np.ndarray) -> np.ndarray:
        pauli = self._sampler.sample(self.rng)
        if pauli is None:
            return state
        return self.apply_pauli(state, pauli)

    def measure(self, state: np.ndarray, basis: Basis) -> int:
        probability_zero = _snap((1 + float(np.dot(state, basis.vector))) / 2)
        outcome = 0 if self.rng.uniform() < probability_zero else 1
        return self._sampler.readout(outcome, self.rng)


@dataclass(frozen=True)
class CircuitQubit:
    bit: int
    basis: Basis
    operations: Tuple[str, ...] = ()


class CircuitChannel(ChannelModel):
    """Runs every measurement as a one-qubit circuit on the Aer simulator."""

    def __init__(self, rng: RandomSource, noise: Optional[NoiseChannel] = None):
        super().__init__(rng, noise)
        self._noise_factory = NoiseModelFactory()
        noise_model = self._noise_factory.build(self.noise) if self.noise.is_active() else None
        self._backend = AerSimulator(method="density_matrix", noise_model=noise_model)

    def prepare(self, bit: int, basis: Basis) -> CircuitQubit:
        return CircuitQubit(bit=bit, basis=basis)

    def apply_pauli(self, state: CircuitQubit, pauli: str) -> CircuitQubit:
        if pauli not in PAULIS:
            raise ValueError(f"Unknown Pauli operator '{pauli}'")
        return replace(state, operations=state.operations + (pauli.lower(),))

    def transmit(self, state: CircuitQubit) -> CircuitQubit:
        return replace(state, operations=state.operations + (TRANSIT_GATE,))

    def measure(self, state: CircuitQubit, basis: Basis) -> int:
        circuit = self.build_circuit(state, basis)
        job = self._backend.run(circuit, shots=1, seed_simulator=self.rng.integer(0, 2**31 - 1))
        counts = job.result().get_counts()
        bit_string = max(counts, key=counts.get)
        return int(bit_string)

    @staticmethod
    def build_circuit(state: CircuitQubit, measurement_basis: Basis) -> QuantumCircuit:
        circuit = QuantumCircuit(1, 1)
        if state.bit == 1:
            circuit.x(0)
        circuit.ry(state.basis.theta, 0)
        circuit.rz(state.basis.phi, 0)

        for operation in state.operations:
            getattr(circuit, operation)(0)

        circuit.rz(-measurement_basis.phi, 0)
        circuit.ry(-measurement_basis.theta, 0)
        circuit.measure(0, 0)
        return circuit
