import pytest

from qkd_pipeline import (
    ExchangeOrchestrator,
    NumpyRandomSource,
    ProbabilisticChannel,
    ProtocolVariant,
    QKDOptions,
)
from qkd_pipeline.bits import error_rate


def run_exchange(options, rounds, seed=1234, eavesdropper=None):
    rng = NumpyRandomSource(seed=seed)
    channel = ProbabilisticChannel(rng, options.noise)
    return ExchangeOrchestrator(options, channel, rng, eavesdropper).run(rounds)


def matched(transcript):
    return [record for record in transcript.rounds if record.sender_basis == record.receiver_basis]


@pytest.mark.parametrize(
    "options, basis_count",
    [
        (QKDOptions(protocol="bb84"), 2),
        (QKDOptions(protocol="bb84", enhanced_security=True), 3),
        (QKDOptions(protocol="e91"), 3),
    ],
)
def test_exchange_produces_requested_rounds_and_bases(options, basis_count):
    transcript = run_exchange(options, 300)

    assert len(transcript) == 300
    assert [record.index for record in transcript.rounds] == list(range(300))
    assert {record.sender_basis for record in transcript.rounds} == set(range(basis_count))
    assert {record.receiver_basis for record in transcript.rounds} == set(range(basis_count))


def test_bb84_matching_bases_agree_without_noise_or_eve():
    transcript = run_exchange(QKDOptions(protocol=ProtocolVariant.BB84), 400)
    records = matched(transcript)

    assert records
    assert all(record.sender_bit == record.receiver_bit for record in records)


def test_e91_aligned_bases_are_anticorrelated():
    transcript = run_exchange(QKDOptions(protocol=ProtocolVariant.E91), 600)
    key_rounds = [
        record
        for record in transcript.rounds
        if (record.sender_basis, record.receiver_basis) in {(0, 0), (2, 2)}
    ]

    assert key_rounds
    assert all(record.sender_bit != record.receiver_bit for record in key_rounds)


def test_decoys_are_marked_at_roughly_the_configured_rate():
    with_decoys = run_exchange(QKDOptions(protocol="bb84", use_decoy_states=True), 2000)
    without_decoys = run_exchange(QKDOptions(protocol="bb84"), 500)

    assert 0.07 < with_decoys.decoy_count() / len(with_decoys) < 0.13
    assert without_decoys.decoy_count() == 0


def test_noise_protection_randomises_phase_without_errors():
    transcript = run_exchange(QKDOptions(protocol="bb84", use_noise_protection=True), 400)
    records = matched(transcript)

    assert transcript.phase_randomised > 0
    assert error_rate([r.sender_bit for r in records], [r.receiver_bit for r in records]) == 0.0


def test_same_seed_reproduces_the_transcript():
    options = QKDOptions(protocol="bb84", use_decoy_states=True)

    assert run_exchange(options, 200, seed=5).rounds == run_exchange(options, 200, seed=5).rounds


def test_transcript_dataframe():
    transcript = run_exchange(QKDOptions(protocol="bb84"), 32)
    df = transcript.to_dataframe()

    expected_columns = {"Round", "Sender basis", "Receiver basis", "Sender bit", "Receiver bit", "Decoy", "Eve"}
    assert expected_columns.issubset(df.columns)
    assert len(df) == 32
    assert set(df["Sender basis"]) <= {"Z", "X"}


def test_exchange_requires_positive_round_count():
    with pytest.raises(ValueError):
        run_exchange(QKDOptions(), 0)
