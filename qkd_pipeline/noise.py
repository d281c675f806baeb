from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, Optional

from qiskit_aer.noise import NoiseModel, ReadoutError, errors

from .random_source import RandomSource

# The quantum channel is modelled as a single identity gate between
# preparation and measurement; noise is attached to that gate only.
TRANSIT_GATE = "id"


def _clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))


@dataclass(frozen=True)
class NoiseChannel:
    name: str = "none"
    params: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.name not in NoiseModelFactory.SUPPORTED_CHANNELS:
            raise ValueError(f"Unsupported noise channel '{self.name}'")

    def is_active(self) -> bool:
        return self.name != "none" or self.has_readout_error()

    def has_readout_error(self) -> bool:
        return any(key in self.params and abs(self.params[key]) > 0 for key in ("p0to1", "p1to0"))


class NoiseModelFactory:
    SUPPORTED_CHANNELS = {
        "none",
        "depolarizing",
        "bit_flip",
        "phase_flip",
        "phase_damping",
        "amplitude_damping",
        "thermal_relaxation",
    }

    def build(self, channel: NoiseChannel) -> NoiseModel:
        noise_model = NoiseModel()

        if channel.name not in self.SUPPORTED_CHANNELS:
            raise ValueError(f"Unsupported noise channel '{channel.name}'")

        if channel.name != "none":
            quantum_error = self._build_quantum_error(channel)
            noise_model.add_all_qubit_quantum_error(quantum_error, [TRANSIT_GATE])

        if channel.has_readout_error():
            noise_model.add_all_qubit_readout_error(self._build_readout_error(channel))

        return noise_model

    def _build_quantum_error(self, channel: NoiseChannel):
        name = channel.name
        params = channel.params

        if name == "depolarizing":
            return errors.depolarizing_error(_clamp(params.get("p", 0.0)), 1)

        if name == "bit_flip":
            probability = _clamp(params.get("p", 0.0))
            return errors.pauli_error([("X", probability), ("I", 1 - probability)])

        if name == "phase_flip":
            probability = _clamp(params.get("p", 0.0))
            return errors.pauli_error([("Z", probability), ("I", 1 - probability)])

        if name == "phase_damping":
            return errors.phase_damping_error(_clamp(params.get("lambda", 0.0)))

        if name == "amplitude_damping":
            return errors.amplitude_damping_error(_clamp(params.get("gamma", 0.0)))

        if name == "thermal_relaxation":
            t1 = max(params.get("t1", 100.0), 1e-9)
            t2 = max(params.get("t2", 100.0), 1e-9)
            gate_time = max(params.get("gate_time", 50.0), 1e-9)
            return errors.thermal_relaxation_error(t1, t2, gate_time)

        raise ValueError(f"Unsupported noise channel '{name}'")

    def _build_readout_error(self, channel: NoiseChannel) -> ReadoutError:
        p01 = _clamp(channel.params.get("p0to1", 0.0))
        p10 = _clamp(channel.params.get("p1to0", 0.0))
        return ReadoutError([[1 - p01, p01], [p10, 1 - p10]])


class PauliNoiseSampler:
    """Draws Pauli errors for the probabilistic channel.

    Only the unital channels reduce to a Pauli mixture; amplitude damping and
    thermal relaxation need the circuit channel.
    """

    PAULI_CHANNELS = {"none", "depolarizing", "bit_flip", "phase_flip", "phase_damping"}

    def __init__(self, channel: NoiseChannel):
        if channel.name not in self.PAULI_CHANNELS:
            raise ValueError(f"Noise channel '{channel.name}' requires the circuit channel")
        self.channel = channel
        self._weights = self._pauli_weights(channel)

    def sample(self, rng: RandomSource) -> Optional[str]:
        if not self._weights:
            return None
        draw = rng.uniform()
        cumulative = 0.0
        for pauli, weight in self._weights:
            cumulative += weight
            if draw < cumulative:
                return pauli
        return None

    def readout(self, bit: int, rng: RandomSource) -> int:
        if not self.channel.has_readout_error():
            return bit
        key = "p0to1" if bit == 0 else "p1to0"
        if rng.uniform() < _clamp(self.channel.params.get(key, 0.0)):
            return bit ^ 1
        return bit

    @staticmethod
    def _pauli_weights(channel: NoiseChannel) -> list[tuple[str, float]]:
        name = channel.name
        params = channel.params
        if name == "depolarizing":
            p = _clamp(params.get("p", 0.0))
            return [("X", p / 4), ("Y", p / 4), ("Z", p / 4)]
        if name == "bit_flip":
            return [("X", _clamp(params.get("p", 0.0)))]
        if name == "phase_flip":
            return [("Z", _clamp(params.get("p", 0.0)))]
        if name == "phase_damping":
            lam = _clamp(params.get("lambda", 0.0))
            return [("Z", (1 - math.sqrt(1 - lam)) / 2)]
        return []
