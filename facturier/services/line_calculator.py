from __future__ import annotations

from decimal import Decimal
from typing import Optional

from facturier.models.common import RoundingMode
from facturier.models.line import DiscountAmount, DiscountRate, LineInput, LineResult
from facturier.models.tax import CalculationOrder
from facturier.services.rounding import percentage_of, round_amount


def _as_rate(value) -> Optional[Decimal]:
    if value is None:
        return None
    rate = value if isinstance(value, Decimal) else Decimal(str(value))
    if rate < 0:
        raise ValueError(f"negative surcharge rate: {rate}")
    return rate


def calculate_line(
    line: LineInput,
    *,
    surcharge_rate_percent: Optional[Decimal] = None,
    surcharge_calculation_order: CalculationOrder = CalculationOrder.BEFORE_TVA,
    rounding_mode: RoundingMode = RoundingMode.NEAREST_CENT,
) -> LineResult:
    """Montants d'une ligne : base, remise, net, FODEC, TVA, TTC.

    Fonction pure. La remise est plafonnée à la base (pas d'erreur), chaque
    montant dérivé est arrondi une seule fois.
    """
    base = round_amount(line.quantity * line.unit_price_cents)

    discount = line.discount
    discount_rate: Optional[Decimal] = None
    if isinstance(discount, DiscountAmount):
        requested = discount.cents
    elif isinstance(discount, DiscountRate):
        discount_rate = discount.percent
        requested = percentage_of(base, discount.percent)
    else:
        requested = 0
    discount_cents = min(requested, base)
    net = base - discount_cents

    surcharge_rate = _as_rate(surcharge_rate_percent)
    surcharge = percentage_of(net, surcharge_rate, rounding_mode) if surcharge_rate else 0

    vat_base = net + surcharge if surcharge_calculation_order == CalculationOrder.BEFORE_TVA else net
    vat = percentage_of(vat_base, line.vat_rate_percent, rounding_mode)

    return LineResult(
        quantity=line.quantity,
        unit_price_cents=line.unit_price_cents,
        vat_rate_percent=line.vat_rate_percent,
        discount_rate_percent=discount_rate,
        discount_amount_cents=discount_cents,
        net_amount_cents=net,
        surcharge_rate_percent=surcharge_rate,
        surcharge_amount_cents=surcharge,
        vat_amount_cents=vat,
        gross_amount_cents=net + surcharge + vat,
    )
