import pytest

from qkd_pipeline import (
    ExchangeOrchestrator,
    NumpyRandomSource,
    ProbabilisticChannel,
    ProtocolVariant,
    QKDOptions,
    RoundRecord,
    SiftedKey,
    SiftingEngine,
)
from qkd_pipeline.sifting import CHSH_PAIRS, SiftAction


def test_e91_rule_table():
    engine = SiftingEngine(ProtocolVariant.E91, 3)

    for pair in [(0, 0), (2, 2)]:
        rule = engine.rule_for(*pair)
        assert rule.action is SiftAction.KEY
        assert rule.invert_receiver
    for index, pair in enumerate(CHSH_PAIRS):
        rule = engine.rule_for(*pair)
        assert rule.action is SiftAction.SECURITY_TEST
        assert rule.pair_index == index
    for pair in [(1, 0), (2, 0), (2, 1)]:
        assert engine.rule_for(*pair).action is SiftAction.DISCARD


@pytest.mark.parametrize("basis_count", [2, 3])
def test_bb84_rule_table_keeps_matching_bases(basis_count):
    engine = SiftingEngine(ProtocolVariant.BB84, basis_count)

    assert len(engine.rules) == basis_count**2
    for (sender, receiver), rule in engine.rules.items():
        expected = SiftAction.KEY if sender == receiver else SiftAction.DISCARD
        assert rule.action is expected
        assert not rule.invert_receiver


def test_basis_pair_outside_table_is_rejected():
    engine = SiftingEngine(ProtocolVariant.BB84, 2)

    with pytest.raises(ValueError):
        engine.rule_for(2, 2)


def test_e91_key_rounds_invert_receiver_bit():
    rounds = [
        RoundRecord(0, 0, 0, sender_bit=1, receiver_bit=0),
        RoundRecord(1, 2, 2, sender_bit=0, receiver_bit=1),
        RoundRecord(2, 0, 2, sender_bit=1, receiver_bit=1),
        RoundRecord(3, 1, 0, sender_bit=1, receiver_bit=0),
    ]

    result = SiftingEngine(ProtocolVariant.E91, 3).sift(rounds)

    assert result.sifted_key.sender == [1, 0]
    assert result.sifted_key.receiver == [1, 0]
    assert result.sifted_key.positions == [0, 1]
    assert [sample.pair_index for sample in result.security_samples] == [0]
    assert result.discarded == 1


def test_decoys_never_enter_the_sifted_key():
    rounds = [
        RoundRecord(0, 0, 0, 1, 1),
        RoundRecord(1, 0, 0, 1, 0, is_decoy=True),
        RoundRecord(2, 1, 1, 0, 0, is_decoy=True),
        RoundRecord(3, 0, 1, 0, 1, is_decoy=True),
    ]

    result = SiftingEngine(ProtocolVariant.BB84, 2).sift(rounds)

    assert result.sifted_key.positions == [0]
    assert len(result.decoy_samples) == 3
    assert result.decoy_checked == 2
    assert result.decoy_errors == 1
    assert result.decoy_error_rate == pytest.approx(0.5)
    assert result.test_sample_count == 3


def test_pair_tallies_count_raw_agreement():
    rounds = [
        RoundRecord(0, 0, 1, 0, 0),
        RoundRecord(1, 0, 1, 0, 1),
        RoundRecord(2, 0, 1, 1, 1),
    ]

    result = SiftingEngine(ProtocolVariant.BB84, 2).sift(rounds)

    assert result.pair_tallies[(0, 1)] == [2, 1]
    assert result.pair_tallies[(0, 0)] == [0, 0]


@pytest.mark.parametrize("protocol", ["bb84", "e91"])
def test_sifted_positions_only_come_from_key_rules(protocol):
    options = QKDOptions(protocol=protocol, use_decoy_states=True)
    rng = NumpyRandomSource(seed=77)
    transcript = ExchangeOrchestrator(options, ProbabilisticChannel(rng), rng).run(500)
    engine = SiftingEngine.for_options(options)

    result = engine.sift(transcript.rounds)
    key = result.sifted_key

    assert len(key.sender) == len(key.receiver) == len(key.positions)
    for position in key.positions:
        record = transcript.rounds[position]
        assert not record.is_decoy
        assert engine.rule_for(record.sender_basis, record.receiver_basis).action is SiftAction.KEY
    assert key.sender == key.receiver


def test_sifted_key_requires_equal_lengths():
    with pytest.raises(ValueError):
        SiftedKey(sender=[0, 1], receiver=[0])
