from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from fastest_cep.errors import ProviderError


# ===========================
# Provider Records
# ===========================

class ViaCepAddress(BaseModel):
    """Address record as returned by ViaCEP."""

    model_config = ConfigDict(extra="ignore")

    cep: str = ""
    logradouro: str = ""
    complemento: str = ""
    unidade: str = ""
    bairro: str = ""
    localidade: str = ""
    uf: str = ""
    ibge: str = ""
    gia: str = ""
    ddd: str = ""
    siafi: str = ""

    @property
    def region(self) -> str:
        return self.uf

    @property
    def locality(self) -> str:
        return self.localidade

    @property
    def neighborhood(self) -> str:
        return self.bairro

    @property
    def street(self) -> str:
        return self.logradouro


class BrasilApiAddress(BaseModel):
    """Address record as returned by BrasilAPI."""

    model_config = ConfigDict(extra="ignore")

    cep: str = ""
    state: str = ""
    city: str = ""
    neighborhood: Optional[str] = None
    street: Optional[str] = None
    service: str = ""

    @property
    def region(self) -> str:
        return self.state

    @property
    def locality(self) -> str:
        return self.city


# ===========================
# Race Results
# ===========================

@dataclass(frozen=True)
class ProviderResult:
    """What a single provider produced: a payload or an error, never both."""

    source: str
    payload: Optional[Dict[str, Any]] = None
    error: Optional[ProviderError] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.payload is not None

    def to_response(self) -> Dict[str, Any]:
        """Provider fields plus the `source` tag naming the provider."""
        if not self.ok:
            raise ValueError(f"Result from {self.source} is a failure and has no payload")
        return {**self.payload, "source": self.source}

    def describe_failure(self) -> str:
        if self.error is None:
            return f"{self.source}: ok"
        return str(self.error)


class RaceStatus(Enum):
    """Terminal states of a race."""
    SUCCEEDED = "succeeded"
    ALL_FAILED = "all_failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class RaceOutcome:
    """The single decided result of a race."""

    status: RaceStatus
    winner: Optional[ProviderResult] = None
    failures: Tuple[ProviderResult, ...] = field(default_factory=tuple)
    elapsed: float = 0.0

    @classmethod
    def succeeded(cls, winner: ProviderResult, failures=(), elapsed: float = 0.0) -> "RaceOutcome":
        return cls(RaceStatus.SUCCEEDED, winner=winner, failures=tuple(failures), elapsed=elapsed)

    @classmethod
    def all_failed(cls, failures, elapsed: float = 0.0) -> "RaceOutcome":
        return cls(RaceStatus.ALL_FAILED, failures=tuple(failures), elapsed=elapsed)

    @classmethod
    def timed_out(cls, failures=(), elapsed: float = 0.0) -> "RaceOutcome":
        return cls(RaceStatus.TIMED_OUT, failures=tuple(failures), elapsed=elapsed)

    def failure_details(self) -> str:
        return "; ".join(f.describe_failure() for f in self.failures)
