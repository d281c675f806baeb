import pytest

from qkd_pipeline import NoiseChannel, NoiseModelFactory, ScriptedRandomSource
from qkd_pipeline.noise import PauliNoiseSampler


def test_noise_model_none_has_no_errors():
    factory = NoiseModelFactory()
    model = factory.build(NoiseChannel())

    assert model.is_ideal()


def test_noise_model_with_readout_error():
    factory = NoiseModelFactory()
    channel = NoiseChannel(params={"p0to1": 0.1, "p1to0": 0.2})
    model = factory.build(channel)

    payload = model.to_dict()
    assert payload["errors"], "Expected serialized readout error"
    readout_entry = next(err for err in payload["errors"] if err["type"] == "roerror")
    probabilities = readout_entry["probabilities"]
    assert pytest.approx(probabilities[0][1], rel=1e-6) == 0.1
    assert pytest.approx(probabilities[1][0], rel=1e-6) == 0.2


def test_quantum_error_is_attached_to_transit_gate_only():
    model = NoiseModelFactory().build(NoiseChannel("depolarizing", {"p": 0.1}))

    assert "id" in model.noise_instructions
    assert "x" not in model.noise_instructions


def test_noise_channel_invalid_name():
    with pytest.raises(ValueError):
        NoiseChannel(name="invalid")


def test_noise_channel_activity():
    assert not NoiseChannel().is_active()
    assert NoiseChannel(params={"p1to0": 0.05}).is_active()
    assert NoiseChannel("bit_flip", {"p": 0.1}).is_active()


@pytest.mark.parametrize(
    "draw, expected",
    [(0.05, "X"), (0.15, "Y"), (0.25, "Z"), (0.35, None)],
)
def test_depolarizing_sampler_splits_probability_evenly(draw, expected):
    sampler = PauliNoiseSampler(NoiseChannel("depolarizing", {"p": 0.4}))
    rng = ScriptedRandomSource(uniforms=[draw])

    assert sampler.sample(rng) == expected


def test_sampler_without_noise_consumes_no_randomness():
    sampler = PauliNoiseSampler(NoiseChannel())
    rng = ScriptedRandomSource()

    assert sampler.sample(rng) is None
    assert rng.calls == 0


def test_phase_damping_maps_to_phase_flip():
    sampler = PauliNoiseSampler(NoiseChannel("phase_damping", {"lambda": 1.0}))

    assert sampler.sample(ScriptedRandomSource(uniforms=[0.49])) == "Z"
    assert sampler.sample(ScriptedRandomSource(uniforms=[0.51])) is None


def test_sampler_rejects_non_pauli_channels():
    with pytest.raises(ValueError):
        PauliNoiseSampler(NoiseChannel("amplitude_damping", {"gamma": 0.1}))


def test_readout_flips_only_configured_outcome():
    sampler = PauliNoiseSampler(NoiseChannel(params={"p0to1": 1.0}))
    rng = ScriptedRandomSource(uniforms=[0.5])

    assert sampler.readout(0, rng) == 1
    assert sampler.readout(1, rng) == 1
