# redistribution.py
# ============================================================
# Proportional redistribution of verified snapshot balances.
# ============================================================
#
# The pool paid out on the destination chain is a fixed share of
# total supply (CAP_RATIO * TOTAL_SUPPLY, in base units). When the
# verified claims add up to more than the pool, every destination
# is scaled by the same fixed-point multiplier.
#
# Rules:
#   1. All arithmetic is on Python ints in base units. The only
#      non-integer step is turning the configured supply and ratio
#      into a unit count, done with Decimal and rounded half-up.
#   2. Multiplier carries its own scale S:  m = floor(T * S / O).
#   3. Every destination but the last (ascending by address) gets
#      floor(original * m / S). The last one absorbs the remainder,
#      so the total equals the pool exactly.
#   4. Under the cap nothing is scaled and nothing is absorbed:
#      m = S and final == original.

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Protocol

from errors import RedistributionConsistencyError

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 10**8
DEFAULT_CAP_RATIO = Decimal("0.5")


class ClaimLike(Protocol):
    x42_address: str
    epix_address: str
    snapshot_balance: int


# ────────────────────────────────────────────────────────────
# Results
# ────────────────────────────────────────────────────────────

@dataclass
class DestinationBalance:
    epix_address: str
    original_balance: int
    final_balance: int

    @property
    def deducted(self) -> int:
        return self.original_balance - self.final_balance


@dataclass
class Redistribution:
    scale: int
    target_cap_units: int
    total_original_units: int
    multiplier: int
    destinations: List[DestinationBalance] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def total_final_units(self) -> int:
        return sum(d.final_balance for d in self.destinations)

    @property
    def scaled(self) -> bool:
        return self.multiplier != self.scale

    @property
    def deduction_percentage(self) -> str:
        return deduction_percentage(self.multiplier, self.scale)

    def by_destination(self) -> Dict[str, DestinationBalance]:
        return {d.epix_address: d for d in self.destinations}


# ────────────────────────────────────────────────────────────
# Fixed-point helpers
# ────────────────────────────────────────────────────────────

def _scale_digits(scale: int) -> int:
    digits = len(str(scale)) - 1
    if scale < 1 or 10**digits != scale:
        raise ValueError(f"unit scale must be a power of ten, got {scale}")
    return digits


def format_units(value: int, scale: int = DEFAULT_SCALE) -> str:
    """Base units -> whole-coin decimal string, e.g. 150000000 -> "1.50000000"."""
    digits = _scale_digits(scale)
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), scale)
    if not digits:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{frac:0{digits}d}"


def target_cap_units(total_supply: Decimal, cap_ratio: Decimal, scale: int = DEFAULT_SCALE) -> int:
    """Redistribution pool in base units: total_supply * cap_ratio * scale, rounded half-up."""
    units = Decimal(total_supply) * Decimal(cap_ratio) * scale
    return int(units.to_integral_value(rounding=ROUND_HALF_UP))


def compute_multiplier(target_units: int, total_original_units: int, scale: int = DEFAULT_SCALE) -> int:
    if total_original_units <= target_units:
        return scale
    return (target_units * scale) // total_original_units


def deduction_percentage(multiplier: int, scale: int = DEFAULT_SCALE) -> str:
    """(1 - multiplier/scale) as a percentage with 2 decimals, e.g. "50.00"."""
    pct = Decimal(scale - multiplier) * 100 / Decimal(scale)
    return str(pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _absorb_remainder(
    target_units: int,
    allocated_units: int,
    last_original: int,
    multiplier: int,
    scale: int,
    warnings: List[str],
) -> int:
    remainder = target_units - allocated_units
    if remainder >= 0:
        return remainder
    clamped = last_original * multiplier // scale
    msg = (
        f"remainder for last destination would be negative ({remainder}); "
        f"clamped to {clamped}"
    )
    logger.warning("Redistribution consistency warning: %s", msg)
    warnings.append(msg)
    return clamped


def group_by_destination(claims: Iterable[ClaimLike]) -> Dict[str, int]:
    totals: Dict[str, int] = defaultdict(int)
    for c in claims:
        balance = int(c.snapshot_balance)
        if balance < 0:
            raise ValueError(f"negative claimed balance for {c.x42_address}")
        totals[c.epix_address] += balance
    return dict(totals)


# ────────────────────────────────────────────────────────────
# Engine
# ────────────────────────────────────────────────────────────

def compute_redistribution(
    claims: Iterable[ClaimLike],
    total_supply: Decimal,
    cap_ratio: Decimal = DEFAULT_CAP_RATIO,
    scale: int = DEFAULT_SCALE,
) -> Redistribution:
    """
    Final balance per destination address.

    Raises RedistributionConsistencyError if the scaled total cannot be made
    to match the pool exactly.
    """
    _scale_digits(scale)
    originals = group_by_destination(claims)
    target = target_cap_units(total_supply, cap_ratio, scale)
    total_original = sum(originals.values())
    multiplier = compute_multiplier(target, total_original, scale)

    result = Redistribution(
        scale=scale,
        target_cap_units=target,
        total_original_units=total_original,
        multiplier=multiplier,
    )
    addresses = sorted(originals)
    if not addresses:
        return result

    if multiplier == scale:
        result.destinations = [
            DestinationBalance(a, originals[a], originals[a]) for a in addresses
        ]
        log_balance_summary(result)
        return result

    allocated = 0
    for address in addresses[:-1]:
        final = originals[address] * multiplier // scale
        allocated += final
        result.destinations.append(DestinationBalance(address, originals[address], final))

    last = addresses[-1]
    last_final = _absorb_remainder(
        target, allocated, originals[last], multiplier, scale, result.warnings
    )
    result.destinations.append(DestinationBalance(last, originals[last], last_final))

    log_balance_summary(result)
    if result.total_final_units != target:
        raise RedistributionConsistencyError(
            f"redistribution total {result.total_final_units} does not match pool {target}",
            target_cap_units=target,
            total_final_units=result.total_final_units,
        )
    return result


def log_balance_summary(result: Redistribution) -> None:
    scale = result.scale
    target = result.target_cap_units if result.scaled else result.total_original_units
    logger.info(
        "Redistribution: destinations=%d original=%s final=%s target=%s difference=%s multiplier=%s",
        len(result.destinations),
        format_units(result.total_original_units, scale),
        format_units(result.total_final_units, scale),
        format_units(result.target_cap_units, scale),
        format_units(result.total_final_units - target, scale),
        format_units(result.multiplier, scale),
    )
