"""
Cycle Outcomes
==============

Resultado de un ciclo fetch→publish, representado como valor (nunca excepción).

- AllSucceeded: todos los publish confirmados (o batch vacío)
- PartialFailure: al menos un publish falló o quedó sin ack al deadline
- Skipped: fase de publish omitida (broker no disponible)
- FetchFailed: el counter source falló; el ciclo se descarta
"""
from dataclasses import dataclass, asdict
from typing import Any, Dict, Union


@dataclass(frozen=True)
class AllSucceeded:
    total: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PartialFailure:
    failed_count: int
    total: int
    timed_out: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Skipped:
    reason: str

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FetchFailed:
    cause: BaseException

    def as_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self.cause).__name__,
            "error_message": str(self.cause),
        }


NOT_CONNECTED = "not_connected"

PublishOutcome = Union[AllSucceeded, PartialFailure, Skipped]
CycleOutcome = Union[AllSucceeded, PartialFailure, Skipped, FetchFailed]

__all__ = [
    "AllSucceeded",
    "PartialFailure",
    "Skipped",
    "FetchFailed",
    "NOT_CONNECTED",
    "PublishOutcome",
    "CycleOutcome",
]
