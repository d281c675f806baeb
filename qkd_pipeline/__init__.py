"""Simulated E91 and BB84 quantum key distribution pipeline."""

from .authentication import Authenticator
from .channel import Basis, ChannelModel, CircuitChannel, ProbabilisticChannel
from .eavesdropper import EavesdropStrategy, Eavesdropper, make_eavesdropper
from .error_correction import BlockParityReconciler, ReconciliationOutcome
from .exchange import ExchangeOrchestrator, ExchangeTranscript, RoundRecord
from .key_distribution import QuantumKeyDistribution
from .noise import NoiseChannel, NoiseModelFactory
from .options import AuthenticationMode, ProtocolVariant, QKDConfigurationError, QKDOptions
from .privacy import PrivacyAmplificationResult, PrivacyAmplifier
from .protocol import ProtocolController, ProtocolPhase
from .random_source import NumpyRandomSource, RandomSource, ScriptedRandomSource
from .result import FailureKind, KeyDistributionResult
from .security import SecurityVerdict, SecurityVerifier
from .sifting import SiftedKey, SiftingEngine, SiftingResult

__all__ = [
    "Authenticator",
    "AuthenticationMode",
    "Basis",
    "BlockParityReconciler",
    "ChannelModel",
    "CircuitChannel",
    "EavesdropStrategy",
    "Eavesdropper",
    "ExchangeOrchestrator",
    "ExchangeTranscript",
    "FailureKind",
    "KeyDistributionResult",
    "NoiseChannel",
    "NoiseModelFactory",
    "NumpyRandomSource",
    "PrivacyAmplificationResult",
    "PrivacyAmplifier",
    "ProbabilisticChannel",
    "ProtocolController",
    "ProtocolPhase",
    "ProtocolVariant",
    "QKDConfigurationError",
    "QKDOptions",
    "QuantumKeyDistribution",
    "RandomSource",
    "ReconciliationOutcome",
    "RoundRecord",
    "ScriptedRandomSource",
    "SecurityVerdict",
    "SecurityVerifier",
    "SiftedKey",
    "SiftingEngine",
    "SiftingResult",
    "make_eavesdropper",
]
