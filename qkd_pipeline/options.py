from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple

from .bits import to_bits
from .noise import NoiseChannel

CHSH_CLASSICAL_BOUND = 2.0
CHSH_QUANTUM_BOUND = 2.0 * math.sqrt(2.0)


class QKDConfigurationError(ValueError):
    """Raised for option combinations the pipeline cannot run with."""


class ProtocolVariant(str, Enum):
    E91 = "e91"
    BB84 = "bb84"


class AuthenticationMode(str, Enum):
    NONE = "none"
    STANDARD = "standard"
    ENHANCED = "enhanced"


@dataclass(frozen=True)
class QKDOptions:
    protocol: ProtocolVariant = ProtocolVariant.E91
    key_length: int = 256
    security_level: int = 3
    security_threshold: float = 2.2
    error_threshold: float = 0.10
    enhanced_security: bool = False
    use_decoy_states: bool = False
    use_noise_protection: bool = False
    max_attempts: int = 3
    authentication_mode: AuthenticationMode = AuthenticationMode.NONE
    pre_shared_secret: Optional[Tuple[int, ...]] = None
    enable_logging: bool = False
    initial_rounds: int = 0
    noise: NoiseChannel = field(default_factory=NoiseChannel)

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "protocol", ProtocolVariant(self.protocol))
            object.__setattr__(self, "authentication_mode", AuthenticationMode(self.authentication_mode))
        except ValueError as exc:
            raise QKDConfigurationError(str(exc)) from None

        if self.key_length <= 0:
            raise QKDConfigurationError("key_length must be positive")
        if not 1 <= self.security_level <= 5:
            raise QKDConfigurationError("security_level must be between 1 and 5")
        if not 0.0 < self.security_threshold <= CHSH_QUANTUM_BOUND:
            raise QKDConfigurationError(
                f"security_threshold must be in (0, {CHSH_QUANTUM_BOUND:.3f}]"
            )
        if not 0.0 < self.error_threshold < 0.5:
            raise QKDConfigurationError("error_threshold must be between 0 and 0.5")
        if self.max_attempts <= 0:
            raise QKDConfigurationError("max_attempts must be positive")
        if self.initial_rounds < 0:
            raise QKDConfigurationError("initial_rounds must be non-negative")

        if self.pre_shared_secret is not None:
            try:
                secret = tuple(to_bits(self.pre_shared_secret))
            except (TypeError, ValueError) as exc:
                raise QKDConfigurationError(f"invalid pre_shared_secret: {exc}") from None
            if not secret:
                raise QKDConfigurationError("pre_shared_secret must not be empty")
            object.__setattr__(self, "pre_shared_secret", secret)
        elif self.authentication_mode is AuthenticationMode.STANDARD:
            raise QKDConfigurationError("standard authentication requires a pre_shared_secret")

    @property
    def is_entanglement_based(self) -> bool:
        return self.protocol is ProtocolVariant.E91

    @property
    def basis_count(self) -> int:
        if self.is_entanglement_based or self.enhanced_security:
            return 3
        return 2

    def with_overrides(self, **changes) -> "QKDOptions":
        return replace(self, **changes)
