"""Caller-facing entry points for quantum key distribution.

:class:`QuantumKeyDistribution` wraps the protocol controller with the
options it was constructed with. Every call may pass its own options, and the
``*_async`` variants run the same simulation in a worker thread so an event
loop is never blocked by it.

A :class:`NumpyRandomSource` is split into one child stream per call, so
concurrent async calls never share a generator. Any other injected source is
used as is and must not be driven by overlapping calls.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Tuple

from .channel import ChannelModel
from .eavesdropper import EavesdropStrategy
from .noise import NoiseChannel, PauliNoiseSampler
from .options import QKDConfigurationError, QKDOptions
from .protocol import ProtocolController, estimate_required_rounds
from .random_source import NumpyRandomSource, RandomSource
from .result import KeyDistributionResult
from .security import SecurityVerdict, calculate_security_margin

logger = logging.getLogger(__name__)

MAX_ACCEPTABLE_ERROR_RATE = 0.08
VERIFICATION_KEY_LENGTH = 64

ChannelFactory = Callable[[RandomSource, NoiseChannel], ChannelModel]


class QuantumKeyDistribution:
    def __init__(
        self,
        options: Optional[QKDOptions] = None,
        rng: Optional[RandomSource] = None,
        channel_factory: Optional[ChannelFactory] = None,
    ):
        self.options = options if options is not None else QKDOptions()
        self._rng = rng
        self._channel_factory = channel_factory
        self._check_channel_support(self.options)

    def generate_key(self, options: Optional[QKDOptions] = None) -> KeyDistributionResult:
        """Run the full pipeline, retrying failed attempts up to ``max_attempts``."""
        return self._controller(options or self.options).run()

    async def generate_key_async(self, options: Optional[QKDOptions] = None) -> KeyDistributionResult:
        controller = self._controller(options or self.options)
        return await asyncio.to_thread(controller.run)

    def simulate_with_eavesdropper(
        self,
        strategy: EavesdropStrategy = EavesdropStrategy.INTERCEPT_RESEND,
        options: Optional[QKDOptions] = None,
        intercept_probability: float = 1.0,
    ) -> KeyDistributionResult:
        """Run the pipeline with an eavesdropper on the quantum channel.

        For demonstrations and tests only; the key it may produce is not
        meant for use.
        """
        return self._eavesdropped(strategy, options or self.options, intercept_probability).run()

    async def simulate_with_eavesdropper_async(
        self,
        strategy: EavesdropStrategy = EavesdropStrategy.INTERCEPT_RESEND,
        options: Optional[QKDOptions] = None,
        intercept_probability: float = 1.0,
    ) -> KeyDistributionResult:
        controller = self._eavesdropped(strategy, options or self.options, intercept_probability)
        return await asyncio.to_thread(controller.run)

    def verify_channel_security(self, options: Optional[QKDOptions] = None) -> Tuple[bool, float, float]:
        """Check the channel without producing a key.

        Returns ``(is_secure, security_statistic, error_rate)``. Any error
        while exchanging is reported as the worst case ``(False, 0.0, 1.0)``;
        invalid options still raise :class:`QKDConfigurationError`.
        """
        options = options or self.options
        return self._verify(self._verification_controller(options), options)

    async def verify_channel_security_async(self, options: Optional[QKDOptions] = None) -> Tuple[bool, float, float]:
        options = options or self.options
        controller = self._verification_controller(options)
        return await asyncio.to_thread(self._verify, controller, options)

    @staticmethod
    def estimate_required_rounds(key_length: int, expected_error_rate: float, enhanced_security: bool = False) -> int:
        return estimate_required_rounds(key_length, expected_error_rate, enhanced_security)

    @staticmethod
    def calculate_security_margin(statistic: float) -> float:
        return calculate_security_margin(statistic)

    @staticmethod
    def is_error_rate_acceptable(error_rate: float) -> bool:
        return error_rate <= MAX_ACCEPTABLE_ERROR_RATE

    def _verify(self, controller: ProtocolController, options: QKDOptions) -> Tuple[bool, float, float]:
        try:
            verdict: SecurityVerdict = controller.verify_only()
        except Exception as exc:
            if options.enable_logging:
                logger.warning("Channel verification failed: %s", exc)
            return False, 0.0, 1.0

        if options.enable_logging:
            state = "appears secure" if verdict.accepted else "appears compromised"
            logger.info(
                "Channel %s. Statistic %.4f, error rate %.2f%%",
                state,
                verdict.statistic,
                verdict.error_rate * 100,
            )
        return verdict.accepted, verdict.statistic, verdict.error_rate

    def _verification_controller(self, options: QKDOptions) -> ProtocolController:
        verification = options.with_overrides(key_length=min(VERIFICATION_KEY_LENGTH, options.key_length))
        return self._controller(verification)

    def _eavesdropped(
        self, strategy: EavesdropStrategy, options: QKDOptions, intercept_probability: float
    ) -> ProtocolController:
        if options.enable_logging:
            logger.info("Simulating %s with eavesdropping strategy %s", options.protocol.value, strategy)
        return self._controller(
            options,
            eavesdropping_strategy=strategy,
            intercept_probability=intercept_probability,
        )

    def _check_channel_support(self, options: QKDOptions) -> None:
        if self._channel_factory is None and options.noise.name not in PauliNoiseSampler.PAULI_CHANNELS:
            raise QKDConfigurationError(
                f"Noise channel '{options.noise.name}' needs a circuit channel_factory"
            )

    def _session_rng(self) -> RandomSource:
        if self._rng is None:
            return NumpyRandomSource()
        if isinstance(self._rng, NumpyRandomSource):
            return self._rng.spawn()
        return self._rng

    def _controller(self, options: QKDOptions, **kwargs) -> ProtocolController:
        self._check_channel_support(options)
        rng = self._session_rng()
        channel = self._channel_factory(rng, options.noise) if self._channel_factory else None
        return ProtocolController(options, rng=rng, channel=channel, **kwargs)
