from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional, Tuple, TypeVar

from .authentication import Authenticator
from .bits import pack_bits
from .channel import ChannelModel, ProbabilisticChannel
from .eavesdropper import Eavesdropper, make_eavesdropper
from .error_correction import BlockParityReconciler
from .exchange import DECOY_PROBABILITY, ExchangeOrchestrator, bases_for
from .options import AuthenticationMode, QKDOptions
from .privacy import PrivacyAmplifier, bb84_eve_information, e91_eve_information
from .random_source import NumpyRandomSource, RandomSource
from .result import FailureKind, KeyDistributionResult, KeyDistributionResultBuilder
from .security import SecurityVerdict, SecurityVerifier
from .sifting import SiftingEngine, SiftingResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

E91_SIFTING_FACTOR = 4.5


class ProtocolPhase(str, Enum):
    IDLE = "idle"
    EXCHANGING = "exchanging"
    SIFTING = "sifting"
    VERIFYING = "verifying"
    ABORTED = "aborted"
    RECONCILING = "reconciling"
    AMPLIFYING = "amplifying"
    AUTHENTICATING = "authenticating"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_ACTIVE = frozenset(
    {
        ProtocolPhase.EXCHANGING,
        ProtocolPhase.SIFTING,
        ProtocolPhase.VERIFYING,
        ProtocolPhase.RECONCILING,
        ProtocolPhase.AMPLIFYING,
        ProtocolPhase.AUTHENTICATING,
    }
)

TRANSITIONS: Dict[ProtocolPhase, FrozenSet[ProtocolPhase]] = {
    ProtocolPhase.IDLE: frozenset({ProtocolPhase.EXCHANGING}),
    ProtocolPhase.EXCHANGING: frozenset({ProtocolPhase.SIFTING}),
    ProtocolPhase.SIFTING: frozenset({ProtocolPhase.VERIFYING}),
    ProtocolPhase.VERIFYING: frozenset({ProtocolPhase.ABORTED, ProtocolPhase.RECONCILING}),
    ProtocolPhase.RECONCILING: frozenset({ProtocolPhase.AMPLIFYING}),
    ProtocolPhase.AMPLIFYING: frozenset({ProtocolPhase.AUTHENTICATING}),
    ProtocolPhase.AUTHENTICATING: frozenset({ProtocolPhase.ABORTED, ProtocolPhase.SUCCEEDED}),
    ProtocolPhase.ABORTED: frozenset(),
    ProtocolPhase.SUCCEEDED: frozenset(),
    # A failed attempt restarts from a fresh exchange.
    ProtocolPhase.FAILED: frozenset({ProtocolPhase.EXCHANGING}),
}


def run_attempts(
    max_attempts: int,
    body: Callable[[int], T],
    on_error: Optional[Callable[[int, Exception], None]] = None,
) -> Tuple[Optional[T], Optional[Exception]]:
    """Call ``body(attempt)`` until it returns or ``max_attempts`` calls have raised.

    Returns the first value produced together with ``None``, or ``None`` and
    the last exception once every attempt has failed.
    """
    if max_attempts <= 0:
        raise ValueError("max_attempts must be positive")
    last_error: Optional[Exception] = None
    for attempt in range(1, max_attempts + 1):
        try:
            return body(attempt), None
        except Exception as exc:
            last_error = exc
            if on_error is not None:
                on_error(attempt, exc)
    return None, last_error


def _round_up_to_byte(count: int) -> int:
    return ((count + 7) // 8) * 8


def estimate_required_rounds(key_length: int, expected_error_rate: float, enhanced_security: bool = False) -> int:
    if key_length <= 0:
        raise ValueError("key_length must be positive")
    base_factor = 6.0 if enhanced_security else 4.0
    error_factor = 1.0 / (1.0 - min(0.9, max(0.0, expected_error_rate)))
    return _round_up_to_byte(math.ceil(key_length * base_factor * error_factor))


def initial_round_count(options: QKDOptions) -> int:
    if options.initial_rounds:
        return options.initial_rounds
    if options.is_entanglement_based:
        level_factor = 1.5 + 0.5 * options.security_level
        return _round_up_to_byte(math.ceil(options.key_length * E91_SIFTING_FACTOR * level_factor))
    rounds = estimate_required_rounds(options.key_length, options.error_threshold, options.enhanced_security)
    if options.use_decoy_states:
        rounds = _round_up_to_byte(math.ceil(rounds / (1.0 - DECOY_PROBABILITY)))
    return rounds


class ProtocolController:
    def __init__(
        self,
        options: QKDOptions,
        rng: Optional[RandomSource] = None,
        channel: Optional[ChannelModel] = None,
        eavesdropping_strategy: Optional[int] = None,
        intercept_probability: float = 1.0,
        reconciler: Optional[BlockParityReconciler] = None,
    ):
        self.options = options
        self.rng = rng if rng is not None else NumpyRandomSource()
        self.channel = channel if channel is not None else ProbabilisticChannel(self.rng, options.noise)
        self.sifting = SiftingEngine.for_options(options)
        self.verifier = SecurityVerifier(options)
        self.reconciler = reconciler if reconciler is not None else BlockParityReconciler()
        self.amplifier = PrivacyAmplifier(self.rng)

        self.eavesdropper: Optional[Eavesdropper] = None
        if eavesdropping_strategy is not None:
            _, receiver_bases = bases_for(options)
            self.eavesdropper = make_eavesdropper(
                eavesdropping_strategy,
                self.channel,
                self.rng,
                receiver_bases,
                intercept_probability=intercept_probability,
            )

        self.phase = ProtocolPhase.IDLE
        self._builder = KeyDistributionResultBuilder()

    def run(self) -> KeyDistributionResult:
        self.phase = ProtocolPhase.IDLE
        self._trace(
            "Starting %s key distribution: %d bits requested, %d rounds per attempt",
            self.options.protocol.value.upper(),
            self.options.key_length,
            initial_round_count(self.options),
        )
        authenticator = Authenticator.for_session(
            self.options.authentication_mode, self.rng, self.options.pre_shared_secret
        )

        result, error = run_attempts(
            self.options.max_attempts,
            lambda attempt: self._attempt(attempt, authenticator),
            self._on_attempt_error,
        )
        if result is not None:
            return result

        builder = self._builder.snapshot()
        builder.attempts = self.options.max_attempts
        reason = f"Key distribution failed after {self.options.max_attempts} attempts: {error}"
        self._trace(reason)
        return builder.fail(FailureKind.RETRY_EXHAUSTED, reason)

    def verify_only(self) -> SecurityVerdict:
        self.phase = ProtocolPhase.IDLE
        self._builder = KeyDistributionResultBuilder()
        self._transition(ProtocolPhase.EXCHANGING)
        sifting = self._exchange_and_sift()
        self._transition(ProtocolPhase.VERIFYING)
        verdict = self.verifier.verify(sifting)
        if not verdict.accepted:
            self._transition(ProtocolPhase.ABORTED)
        return verdict

    def _attempt(self, attempt: int, authenticator: Optional[Authenticator]) -> KeyDistributionResult:
        builder = self._builder = KeyDistributionResultBuilder(attempts=attempt)
        self._trace("Attempt %d of %d", attempt, self.options.max_attempts)

        self._transition(ProtocolPhase.EXCHANGING)
        sifting = self._exchange_and_sift()

        self._transition(ProtocolPhase.VERIFYING)
        verdict = self.verifier.verify(sifting)
        builder.error_rate = verdict.error_rate
        builder.security_parameter = verdict.statistic
        builder.decoy_error_rate = verdict.decoy_error_rate
        if not self.options.is_entanglement_based:
            # QBER compares every sifted bit plus the checked decoys.
            builder.bits_used_for_error_detection = verdict.sample_count
        self._trace(
            "Security statistic %.4f, error rate %.2f%% (decoy %.2f%%)",
            verdict.statistic,
            verdict.error_rate * 100,
            verdict.decoy_error_rate * 100,
        )

        if not verdict.accepted:
            self._transition(ProtocolPhase.ABORTED)
            return self._reject(verdict)
        if sifting.sifted_length == 0:
            self._transition(ProtocolPhase.ABORTED)
            return builder.fail(FailureKind.INSUFFICIENT_KEY_MATERIAL, "No key-generation rounds survived sifting")

        self._transition(ProtocolPhase.RECONCILING)
        key = sifting.sifted_key
        outcome = self.reconciler.reconcile(key.sender, key.receiver, verdict.error_rate)
        builder.leaked_bits = outcome.leaked_bits
        builder.reconciliation_skipped = outcome.skipped
        if outcome.skipped:
            self._trace("Reconciliation skipped for %d sifted bits", len(key))
        else:
            self._trace("Reconciliation made %d corrections", len(outcome.corrections))

        self._transition(ProtocolPhase.AMPLIFYING)
        eve_information = self._eve_information(len(key), outcome.leaked_bits, verdict)
        seed = self.amplifier.draw_seed()
        sender_final = self.amplifier.apply(key.sender, self.options.key_length, eve_information, seed)
        receiver_final = self.amplifier.apply(outcome.corrected_key, self.options.key_length, eve_information, seed)
        self._trace("Privacy amplification kept %d of %d bits", sender_final.target_length, len(key))

        self._transition(ProtocolPhase.AUTHENTICATING)
        tag = None
        if authenticator is not None:
            tag = authenticator.generate(sender_final.final_key)
            if (
                self.options.authentication_mode is AuthenticationMode.ENHANCED
                and not authenticator.verify(receiver_final.final_key, tag)
            ):
                self._transition(ProtocolPhase.ABORTED)
                return builder.fail(
                    FailureKind.AUTHENTICATION_MISMATCH,
                    "Authentication tag mismatch between sender and receiver keys",
                )

        self._transition(ProtocolPhase.SUCCEEDED)
        self._trace("Key distribution succeeded with %d key bits", sender_final.target_length)
        return builder.succeed(pack_bits(sender_final.final_key), sender_final.target_length, tag)

    def _exchange_and_sift(self) -> SiftingResult:
        orchestrator = ExchangeOrchestrator(self.options, self.channel, self.rng, self.eavesdropper)
        transcript = orchestrator.run(initial_round_count(self.options))
        self._builder.raw_bits_exchanged = len(transcript)

        self._transition(ProtocolPhase.SIFTING)
        sifting = self.sifting.sift(transcript.rounds)
        self._builder.sifted_bits_count = sifting.sifted_length
        self._builder.bits_used_for_error_detection = sifting.test_sample_count
        return sifting

    def _eve_information(self, raw_length: int, leaked_bits: int, verdict: SecurityVerdict) -> float:
        if self.options.is_entanglement_based:
            return e91_eve_information(raw_length, leaked_bits, verdict.statistic)
        return bb84_eve_information(raw_length, leaked_bits, verdict.error_rate)

    def _reject(self, verdict: SecurityVerdict) -> KeyDistributionResult:
        if verdict.insufficient_data:
            reason = f"Insufficient security test data ({verdict.sample_count} samples)"
            self._trace(reason)
            return self._builder.fail(FailureKind.INSUFFICIENT_SECURITY_DATA, reason)

        if self.options.is_entanglement_based:
            reason = (
                f"CHSH value {verdict.statistic:.3f} is below the security threshold "
                f"{self.options.security_threshold:.3f}. Possible eavesdropping detected."
            )
        else:
            reason = (
                f"Error rate {verdict.error_rate:.2%} exceeds threshold "
                f"{self.options.error_threshold:.2%}. Possible eavesdropping detected."
            )
        self._trace(reason)
        return self._builder.fail(FailureKind.CHANNEL_COMPROMISED, reason)

    def _transition(self, phase: ProtocolPhase) -> None:
        if phase not in TRANSITIONS[self.phase]:
            raise RuntimeError(f"Illegal protocol transition {self.phase.value} -> {phase.value}")
        self.phase = phase
        self._builder.phases.append(phase.value)

    def _on_attempt_error(self, attempt: int, exc: Exception) -> None:
        if self.phase in _ACTIVE:
            self.phase = ProtocolPhase.FAILED
            self._builder.phases.append(ProtocolPhase.FAILED.value)
        level = logging.WARNING if self.options.enable_logging else logging.DEBUG
        logger.log(level, "Attempt %d failed: %s", attempt, exc)

    def _trace(self, message: str, *args) -> None:
        level = logging.INFO if self.options.enable_logging else logging.DEBUG
        logger.log(level, message, *args)
