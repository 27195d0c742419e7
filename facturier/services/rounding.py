"""Rounding and proportional allocation of integer amounts (cents)."""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import List, Sequence, Union

from facturier.models.common import RoundingMode

ROUNDING_MAP = {
    RoundingMode.NEAREST_CENT: ROUND_HALF_UP,
    RoundingMode.UP: ROUND_CEILING,
    RoundingMode.DOWN: ROUND_FLOOR,
}

_HUNDRED = Decimal(100)


def round_amount(value: Union[Decimal, int], mode: RoundingMode = RoundingMode.NEAREST_CENT) -> int:
    """Arrondit ``value`` (en centimes, éventuellement fractionnaire) à l'entier selon ``mode``."""
    try:
        rounding = ROUNDING_MAP[RoundingMode(mode)]
    except ValueError as exc:
        raise ValueError(f"Unsupported rounding mode: {mode}") from exc
    return int(Decimal(value).quantize(Decimal(1), rounding=rounding))


def percentage_of(
    base_cents: int,
    rate_percent: Decimal,
    mode: RoundingMode = RoundingMode.NEAREST_CENT,
) -> int:
    return round_amount(Decimal(base_cents) * Decimal(rate_percent) / _HUNDRED, mode)


def allocate_proportionally(
    total: int,
    bases: Sequence[int],
    mode: RoundingMode = RoundingMode.NEAREST_CENT,
    *,
    capped: bool = False,
) -> List[int]:
    """Répartit ``total`` sur ``bases`` au prorata; la somme des parts vaut ``total`` exactement.

    Chaque part est arrondie selon ``mode``; le reste d'arrondi est absorbé par
    la dernière base positive (ordre d'itération). Avec ``capped=True`` aucune
    part ne dépasse sa base : l'excédent éventuel est reporté sur les lignes
    précédentes, de la dernière à la première.

    Bases toutes nulles : partage égal, le reste va aux premières lignes.
    """
    if total < 0:
        raise ValueError("cannot allocate a negative amount")
    count = len(bases)
    if count == 0:
        return []
    if total == 0:
        return [0] * count

    weights = [base if base > 0 else 0 for base in bases]
    sum_weights = sum(weights)
    if capped and total > sum_weights:
        raise ValueError(f"cannot allocate {total} over a capacity of {sum_weights}")

    if sum_weights == 0:
        per_part, remainder = divmod(total, count)
        return [per_part + (1 if idx < remainder else 0) for idx in range(count)]

    absorber = max(idx for idx, weight in enumerate(weights) if weight > 0)
    shares = [0] * count
    accumulated = 0
    total_dec = Decimal(total)
    for idx, weight in enumerate(weights):
        if idx == absorber or weight == 0:
            continue
        share = round_amount(total_dec * weight / sum_weights, mode)
        # jamais au-delà de ce qui reste à répartir
        share = min(share, total - accumulated)
        shares[idx] = share
        accumulated += share
    shares[absorber] = total - accumulated

    if capped:
        _spill_overflow(shares, weights)
    return shares


def _spill_overflow(shares: List[int], caps: Sequence[int]) -> None:
    overflow = 0
    for idx in range(len(shares)):
        if shares[idx] > caps[idx]:
            overflow += shares[idx] - caps[idx]
            shares[idx] = caps[idx]
    for idx in reversed(range(len(shares))):
        if overflow == 0:
            break
        take = min(caps[idx] - shares[idx], overflow)
        shares[idx] += take
        overflow -= take
