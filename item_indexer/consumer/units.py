"""
Unit normalization for item dimensions.

Every dimension value is stored in one canonical unit per physical quantity:
centimetres for length, square centimetres for area, litres for volume and
kilograms for mass. Conversion is a fixed multiplication.
"""

from typing import Dict, Union

from ..core.errors import UnsupportedUnit
from .models import Unit

FACTORS: Dict[Unit, float] = {
    Unit.CM: 1,
    Unit.KG: 1,
    Unit.CM2: 1,
    Unit.L: 1,
    Unit.M2: 0.0001,
    Unit.G: 0.001,
    Unit.M3: 0.001,
    Unit.MM2: 0.01,
    Unit.MM: 0.1,
    Unit.M: 100,
    Unit.CM3: 1000,
    Unit.MM3: 1000000,
}


def resolve_unit(unit: Union[Unit, str]) -> Unit:
    """Resolve a unit tag to a Unit, raising UnsupportedUnit for unknown tags."""
    if isinstance(unit, Unit):
        return unit
    try:
        return Unit(unit)
    except ValueError:
        raise UnsupportedUnit(unit) from None


def normalize(value: float, unit: Union[Unit, str]) -> float:
    """
    Convert ``value`` expressed in ``unit`` to the canonical unit.

    Raises:
        UnsupportedUnit: If the unit has no conversion factor
    """
    resolved = resolve_unit(unit)
    factor = FACTORS.get(resolved)
    if factor is None:
        raise UnsupportedUnit(unit)
    return factor * value
