#!filepath: desim/core/time_units.py
"""
Time-unit registry.

All durations are expressed against seconds. Built-in units use an
astronomical year (365.25 days) so that week = year / 52 and
month = year / 12 compose without calendar drift.

User units follow the ``d<unit>`` convention: a callable named ``dfortnight``
that returns the number of seconds in ``x`` fortnights defines the unit
``fortnight``. Lookup goes local scope -> parent scope -> built-ins, so a
module scope can shadow a built-in unit.
"""
from __future__ import annotations

import math
from typing import Callable, Dict, Iterable, Mapping, Optional, Union

from desim.utils.errors import UnknownTimeUnit


SECONDS_PER_MINUTE = 60.0
SECONDS_PER_HOUR = 3600.0
SECONDS_PER_DAY = 86_400.0
SECONDS_PER_YEAR = 365.25 * SECONDS_PER_DAY

BUILTIN_UNITS: Dict[str, float] = {
    "second": 1.0,
    "minute": SECONDS_PER_MINUTE,
    "hour": SECONDS_PER_HOUR,
    "day": SECONDS_PER_DAY,
    "week": SECONDS_PER_YEAR / 52,
    "month": SECONDS_PER_YEAR / 12,
    "year": SECONDS_PER_YEAR,
}

UnitDef = Union[float, int, Callable[[float], float]]


def _normalise(unit: str) -> str:
    return unit.strip().lower()


class TimeUnitRegistry:
    """
    Scoped unit table.

    >>> reg = TimeUnitRegistry()
    >>> reg.convert(1, "year", "month")
    12.0
    """

    def __init__(self, parent: Optional["TimeUnitRegistry"] = None, namespace: Optional[Mapping] = None):
        self.parent = parent
        self._units: Dict[str, UnitDef] = {}
        if namespace:
            self.scan(namespace)

    # ------------------------------------------------------------------
    # registration
    # ------------------------------------------------------------------
    def register(self, unit_name: str, seconds_per_unit: UnitDef) -> None:
        if not callable(seconds_per_unit):
            value = float(seconds_per_unit)
            if not math.isfinite(value) or value <= 0:
                raise ValueError(f"seconds_per_unit must be positive, got {seconds_per_unit!r}")
        self._units[_normalise(unit_name)] = seconds_per_unit

    def scan(self, namespace: Mapping) -> list:
        """Register every callable ``d<unit>`` found in ``namespace``."""
        found = []
        for key, value in namespace.items():
            if isinstance(key, str) and len(key) > 1 and key.startswith("d") and callable(value):
                self.register(key[1:], value)
                found.append(key[1:])
        return found

    def scope(self, namespace: Optional[Mapping] = None) -> "TimeUnitRegistry":
        """Child registry whose own units shadow this one."""
        return TimeUnitRegistry(parent=self, namespace=namespace)

    # ------------------------------------------------------------------
    # lookup
    # ------------------------------------------------------------------
    def _find(self, unit: str) -> Optional[UnitDef]:
        reg: Optional[TimeUnitRegistry] = self
        while reg is not None:
            if unit in reg._units:
                return reg._units[unit]
            reg = reg.parent
        return BUILTIN_UNITS.get(unit)

    def _resolve(self, unit: Optional[str]) -> tuple[str, UnitDef]:
        if unit is None:
            return "second", 1.0
        if not isinstance(unit, str):
            raise UnknownTimeUnit(unit)
        name = _normalise(unit)
        found = self._find(name)
        if found is None and name.endswith("s"):
            name = name[:-1]
            found = self._find(name)
        if found is None:
            raise UnknownTimeUnit(unit)
        return name, found

    def check(self, unit: Optional[str]) -> str:
        """Canonical (singular, lower-case) name of ``unit``."""
        return self._resolve(unit)[0]

    def canonical_seconds(self, unit_name: Optional[str]) -> float:
        _, definition = self._resolve(unit_name)
        if callable(definition):
            return float(definition(1))
        return float(definition)

    def is_known(self, unit: Optional[str]) -> bool:
        try:
            self._resolve(unit)
        except UnknownTimeUnit:
            return False
        return True

    def units(self) -> list:
        """Every resolvable unit name, local first."""
        names: list = []
        reg: Optional[TimeUnitRegistry] = self
        while reg is not None:
            names.extend(n for n in reg._units if n not in names)
            reg = reg.parent
        names.extend(n for n in BUILTIN_UNITS if n not in names)
        return names

    @staticmethod
    def builtin_units() -> Dict[str, float]:
        return dict(BUILTIN_UNITS)

    # ------------------------------------------------------------------
    # conversion
    # ------------------------------------------------------------------
    def convert(self, value: float, from_unit: Optional[str], to_unit: Optional[str]) -> float:
        """
        ``value`` expressed in ``from_unit`` → same duration in ``to_unit``.
        ``None`` means seconds. Matching units return ``value`` untouched.
        """
        src, _ = self._resolve(from_unit)
        dst, _ = self._resolve(to_unit)
        if src == dst:
            return value
        return value * self.canonical_seconds(src) / self.canonical_seconds(dst)

    # ------------------------------------------------------------------
    # min / max across modules
    # ------------------------------------------------------------------
    def _declared(self, units: Iterable[Optional[str]]) -> list:
        return [u for u in units if u is not None and str(u).upper() != "NA"]

    def min_timeunit(self, units: Iterable[Optional[str]]) -> str:
        """Finest declared unit; ``"second"`` when nothing is declared."""
        declared = self._declared(units)
        if not declared:
            return "second"
        return self.check(min(declared, key=self.canonical_seconds))

    def max_timeunit(self, units: Iterable[Optional[str]]) -> Optional[str]:
        """Coarsest declared unit; ``None`` when nothing is declared."""
        declared = self._declared(units)
        if not declared:
            return None
        return self.check(max(declared, key=self.canonical_seconds))


DEFAULT_TIMEUNITS = TimeUnitRegistry()


def convert(value: float, from_unit: Optional[str], to_unit: Optional[str]) -> float:
    return DEFAULT_TIMEUNITS.convert(value, from_unit, to_unit)
