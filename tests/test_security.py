import math
import random

import pytest

from qkd_pipeline import QKDOptions, SecurityVerifier, SiftedKey, SiftingResult
from qkd_pipeline.bits import error_rate
from qkd_pipeline.security import calculate_security_margin, chsh_correlations, chsh_value
from qkd_pipeline.sifting import CHSH_PAIRS, SecurityTestSample


def samples_for(agreements_per_pair, repeat=5):
    samples = []
    for index, (pair, agree) in enumerate(zip(CHSH_PAIRS, agreements_per_pair)):
        for n in range(repeat):
            bit = n % 2
            samples.append(SecurityTestSample(pair[0], pair[1], bit, bit if agree else bit ^ 1, index))
    return samples


def sifting_with(sender, receiver, samples=(), decoy_checked=0, decoy_errors=0):
    return SiftingResult(
        sifted_key=SiftedKey(list(sender), list(receiver), list(range(len(sender)))),
        security_samples=list(samples),
        decoy_samples=[],
        pair_tallies={},
        decoy_checked=decoy_checked,
        decoy_errors=decoy_errors,
    )


def test_error_rate_properties():
    a = [0, 1, 1, 0, 1]
    b = [1, 1, 0, 0, 0]

    assert error_rate(a, a) == 0.0
    assert error_rate(a, [bit ^ 1 for bit in a]) == 1.0
    assert error_rate(a, b) == error_rate(b, a) == pytest.approx(0.6)
    assert error_rate([], []) == 0.0
    with pytest.raises(ValueError):
        error_rate(a, b[:-1])


def test_chsh_value_of_extreme_correlations():
    samples = samples_for([False, True, False, False])

    assert chsh_correlations(samples) == (-1.0, 1.0, -1.0, -1.0)
    assert chsh_value(samples) == pytest.approx(4.0)


def test_chsh_value_ignores_sample_order():
    samples = samples_for([True, False, True, True], repeat=3) + samples_for([False, False, True, False], repeat=2)
    shuffled = list(samples)
    random.Random(3).shuffle(shuffled)

    assert chsh_value(shuffled) == pytest.approx(chsh_value(samples))


def test_chsh_requires_every_pair():
    samples = [s for s in samples_for([True] * 4) if s.pair_index != 3]

    with pytest.raises(ValueError):
        chsh_correlations(samples)


@pytest.mark.parametrize(
    "statistic, margin",
    [(1.5, 0.0), (2.0, 0.0), (1 + math.sqrt(2), 50.0), (2 * math.sqrt(2), 100.0), (3.0, 100.0)],
)
def test_security_margin(statistic, margin):
    assert calculate_security_margin(statistic) == pytest.approx(margin)


def test_chsh_verifier_accepts_above_threshold():
    options = QKDOptions(protocol="e91", security_level=1)
    verdict = SecurityVerifier(options).verify(
        sifting_with([0, 1], [0, 1], samples_for([False, True, False, False]))
    )

    assert verdict.accepted
    assert verdict.statistic == pytest.approx(4.0)
    assert verdict.error_rate == 0.0
    assert verdict.sample_count == 20


def test_chsh_verifier_rejects_classical_correlations():
    options = QKDOptions(protocol="e91", security_level=1)
    verdict = SecurityVerifier(options).verify(sifting_with([], [], samples_for([True, True, True, True])))

    assert verdict.statistic == pytest.approx(2.0)
    assert not verdict.accepted
    assert not verdict.insufficient_data


def test_chsh_verifier_reports_insufficient_data():
    options = QKDOptions(protocol="e91", security_level=5)
    verdict = SecurityVerifier(options).verify(sifting_with([], [], samples_for([False, True, False, False], 2)))

    assert not verdict.accepted
    assert verdict.insufficient_data
    assert verdict.statistic == 0.0
    assert verdict.sample_count == 8


@pytest.mark.parametrize(
    "receiver, accepted",
    [([0, 1, 1, 0, 1, 0, 0, 1, 1, 0], True), ([1, 1, 1, 0, 1, 0, 0, 1, 1, 0], True), ([1, 0, 1, 0, 1, 0, 0, 1, 1, 0], False)],
)
def test_qber_verifier_threshold(receiver, accepted):
    sender = [0, 1, 1, 0, 1, 0, 0, 1, 1, 0]
    verdict = SecurityVerifier(QKDOptions(protocol="bb84", error_threshold=0.1)).verify(sifting_with(sender, receiver))

    assert verdict.accepted is accepted
    assert verdict.statistic == pytest.approx(error_rate(sender, receiver))


def test_qber_verifier_uses_worse_of_qber_and_decoy_rate():
    key = [0, 1] * 10
    verdict = SecurityVerifier(QKDOptions(protocol="bb84")).verify(
        sifting_with(key, key, decoy_checked=4, decoy_errors=1)
    )

    assert verdict.qber == 0.0
    assert verdict.decoy_error_rate == pytest.approx(0.25)
    assert verdict.error_rate == pytest.approx(0.25)
    assert not verdict.accepted


def test_qber_verifier_without_key_material():
    verdict = SecurityVerifier(QKDOptions(protocol="bb84")).verify(sifting_with([], []))

    assert not verdict.accepted
    assert verdict.insufficient_data
