from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .bits import unpack_bits


class FailureKind(str, Enum):
    CHANNEL_COMPROMISED = "channel_compromised"
    INSUFFICIENT_SECURITY_DATA = "insufficient_security_data"
    INSUFFICIENT_KEY_MATERIAL = "insufficient_key_material"
    AUTHENTICATION_MISMATCH = "authentication_mismatch"
    RETRY_EXHAUSTED = "retry_exhausted"


@dataclass(frozen=True)
class KeyDistributionResult:
    success: bool
    key: Optional[bytes] = None
    key_bits: int = 0
    authentication_tag: Optional[Tuple[int, ...]] = None
    error_rate: float = 0.0
    security_parameter: float = 0.0
    failure_reason: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    raw_bits_exchanged: int = 0
    sifted_bits_count: int = 0
    bits_used_for_error_detection: int = 0
    leaked_bits: int = 0
    decoy_error_rate: float = 0.0
    reconciliation_skipped: bool = False
    attempts: int = 0
    phases: Tuple[str, ...] = ()

    @property
    def entangled_pairs_created(self) -> int:
        return self.raw_bits_exchanged

    def bits(self) -> List[int]:
        if self.key is None:
            return []
        return unpack_bits(self.key, self.key_bits)

    def to_dict(self) -> Dict[str, Any]:
        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["key"] = self.key.hex() if self.key is not None else None
        payload["failure_kind"] = self.failure_kind.value if self.failure_kind else None
        payload["authentication_tag"] = list(self.authentication_tag) if self.authentication_tag else None
        payload["phases"] = list(self.phases)
        return payload


@dataclass
class KeyDistributionResultBuilder:
    """Collects diagnostics phase by phase; :meth:`build` freezes them once."""

    raw_bits_exchanged: int = 0
    sifted_bits_count: int = 0
    bits_used_for_error_detection: int = 0
    error_rate: float = 0.0
    security_parameter: float = 0.0
    decoy_error_rate: float = 0.0
    leaked_bits: int = 0
    reconciliation_skipped: bool = False
    attempts: int = 0
    phases: List[str] = field(default_factory=list)
    _built: bool = field(default=False, repr=False)

    def snapshot(self) -> "KeyDistributionResultBuilder":
        return KeyDistributionResultBuilder(
            raw_bits_exchanged=self.raw_bits_exchanged,
            sifted_bits_count=self.sifted_bits_count,
            bits_used_for_error_detection=self.bits_used_for_error_detection,
            error_rate=self.error_rate,
            security_parameter=self.security_parameter,
            decoy_error_rate=self.decoy_error_rate,
            leaked_bits=self.leaked_bits,
            reconciliation_skipped=self.reconciliation_skipped,
            attempts=self.attempts,
            phases=list(self.phases),
        )

    def succeed(self, key: bytes, key_bits: int, tag: Optional[List[int]] = None) -> KeyDistributionResult:
        return self._build(
            success=True,
            key=key,
            key_bits=key_bits,
            authentication_tag=tuple(tag) if tag is not None else None,
        )

    def fail(self, kind: FailureKind, reason: str) -> KeyDistributionResult:
        return self._build(success=False, failure_kind=kind, failure_reason=reason)

    def _build(self, **outcome) -> KeyDistributionResult:
        if self._built:
            raise RuntimeError("a result has already been built from this builder")
        self._built = True
        return KeyDistributionResult(
            raw_bits_exchanged=self.raw_bits_exchanged,
            sifted_bits_count=self.sifted_bits_count,
            bits_used_for_error_detection=self.bits_used_for_error_detection,
            error_rate=self.error_rate,
            security_parameter=self.security_parameter,
            decoy_error_rate=self.decoy_error_rate,
            leaked_bits=self.leaked_bits,
            reconciliation_skipped=self.reconciliation_skipped,
            attempts=self.attempts,
            phases=tuple(self.phases),
            **outcome,
        )
