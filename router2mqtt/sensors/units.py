"""
Unit Converter
==============

Convierte contadores de bytes crudos a valor/unidad de display.

Políticas (elegidas en deploy, no por llamada):
- bytes: pass-through, unidad "B"
- gigabytes: bytes / 2^30 redondeado a 2 decimales (half away from zero), unidad "GB"
"""
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Literal, Union

Number = Union[int, float]
UnitPolicy = Literal['bytes', 'gigabytes']

BYTES_PER_GIGABYTE = 2 ** 30
_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class DisplayValue:
    """Valor convertido listo para el state payload."""
    value: str
    unit: str


def is_valid_byte_count(raw: object) -> bool:
    """True si raw es un número finito no negativo (bool excluido)."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return False
    return math.isfinite(raw) and raw >= 0


class UnitConverter:
    """
    Conversor de bytes con política fija.

    Usage:
        converter = UnitConverter("gigabytes")
        converter.convert(1073741824)  # DisplayValue(value="1.00", unit="GB")
    """

    UNITS = {
        'bytes': 'B',
        'gigabytes': 'GB',
    }

    def __init__(self, policy: UnitPolicy = 'gigabytes'):
        if policy not in self.UNITS:
            raise ValueError(
                f"Unknown unit policy '{policy}'. "
                f"Available policies: {', '.join(sorted(self.UNITS))}"
            )
        self.policy = policy

    @property
    def unit(self) -> str:
        return self.UNITS[self.policy]

    def convert(self, raw_bytes: Number) -> DisplayValue:
        """
        Convierte un contador de bytes.

        Args:
            raw_bytes: Contador crudo (finito, >= 0)

        Returns:
            DisplayValue con valor como string decimal

        Raises:
            ValueError: Si raw_bytes es negativo o no finito (error del caller)
        """
        if not is_valid_byte_count(raw_bytes):
            raise ValueError(f"raw_bytes must be a non-negative finite number, got {raw_bytes!r}")

        if self.policy == 'bytes':
            return DisplayValue(value=_format_plain(raw_bytes), unit=self.unit)

        gigabytes = Decimal(raw_bytes) / Decimal(BYTES_PER_GIGABYTE)
        rounded = gigabytes.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
        return DisplayValue(value=str(rounded), unit=self.unit)

    def __repr__(self) -> str:
        return f"UnitConverter(policy={self.policy!r})"


def _format_plain(raw: Number) -> str:
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw)


__all__ = [
    "DisplayValue",
    "UnitConverter",
    "UnitPolicy",
    "BYTES_PER_GIGABYTE",
    "is_valid_byte_count",
]
