from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple

from .bits import error_rate
from .options import CHSH_CLASSICAL_BOUND, CHSH_QUANTUM_BOUND, QKDOptions
from .sifting import CHSH_PAIRS, CHSH_SIGNS, SecurityTestSample, SiftingResult

MIN_CHSH_SAMPLES = 10


@dataclass(frozen=True)
class SecurityVerdict:
    accepted: bool
    statistic: float
    error_rate: float
    qber: float = 0.0
    decoy_error_rate: float = 0.0
    sample_count: int = 0
    insufficient_data: bool = False


def chsh_correlations(samples: Iterable[SecurityTestSample]) -> Tuple[float, ...]:
    """Expectation ``(agree - disagree) / total`` for each designated CHSH pair."""
    agree = [0] * len(CHSH_PAIRS)
    total = [0] * len(CHSH_PAIRS)
    for sample in samples:
        if sample.pair_index is None:
            continue
        total[sample.pair_index] += 1
        if sample.agrees:
            agree[sample.pair_index] += 1
    if any(count == 0 for count in total):
        raise ValueError("every CHSH basis pair needs at least one sample")
    return tuple((2 * a - n) / n for a, n in zip(agree, total))


def chsh_value(samples: Iterable[SecurityTestSample]) -> float:
    correlations = chsh_correlations(samples)
    return abs(sum(sign * value for sign, value in zip(CHSH_SIGNS, correlations)))


def security_factor(statistic: float) -> float:
    """Position of ``statistic`` between the classical and quantum CHSH bounds, in [0, 1]."""
    factor = (statistic - CHSH_CLASSICAL_BOUND) / (CHSH_QUANTUM_BOUND - CHSH_CLASSICAL_BOUND)
    return max(0.0, min(1.0, factor))


def calculate_security_margin(statistic: float) -> float:
    return security_factor(statistic) * 100.0


class SecurityVerifier:
    def __init__(self, options: QKDOptions):
        self.options = options

    @property
    def minimum_samples(self) -> int:
        return MIN_CHSH_SAMPLES * self.options.security_level

    def verify(self, sifting: SiftingResult) -> SecurityVerdict:
        if self.options.is_entanglement_based:
            return self._verify_chsh(sifting)
        return self._verify_qber(sifting)

    def _error_rates(self, sifting: SiftingResult) -> Tuple[float, float]:
        key = sifting.sifted_key
        qber = error_rate(key.sender, key.receiver)
        return qber, max(qber, sifting.decoy_error_rate)

    def _verify_chsh(self, sifting: SiftingResult) -> SecurityVerdict:
        qber, effective = self._error_rates(sifting)
        samples = sifting.security_samples
        pairs_covered = {sample.pair_index for sample in samples}

        if len(samples) < self.minimum_samples or len(pairs_covered) < len(CHSH_PAIRS):
            return SecurityVerdict(
                accepted=False,
                statistic=0.0,
                error_rate=effective,
                qber=qber,
                decoy_error_rate=sifting.decoy_error_rate,
                sample_count=len(samples),
                insufficient_data=True,
            )

        statistic = chsh_value(samples)
        return SecurityVerdict(
            accepted=statistic > self.options.security_threshold,
            statistic=statistic,
            error_rate=effective,
            qber=qber,
            decoy_error_rate=sifting.decoy_error_rate,
            sample_count=len(samples),
        )

    def _verify_qber(self, sifting: SiftingResult) -> SecurityVerdict:
        if sifting.sifted_length == 0:
            return SecurityVerdict(
                accepted=False,
                statistic=0.0,
                error_rate=0.0,
                decoy_error_rate=sifting.decoy_error_rate,
                insufficient_data=True,
            )

        qber, effective = self._error_rates(sifting)
        return SecurityVerdict(
            accepted=effective <= self.options.error_threshold,
            statistic=qber,
            error_rate=effective,
            qber=qber,
            decoy_error_rate=sifting.decoy_error_rate,
            sample_count=sifting.sifted_length + sifting.decoy_checked,
        )
