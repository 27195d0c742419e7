from decimal import Decimal

import pytest
from pydantic import ValidationError

from facturier.models.common import RoundingMode
from facturier.models.line import DiscountAmount, DiscountRate, LineInput, discount_from_fields
from facturier.models.tax import CalculationOrder
from facturier.services.line_calculator import calculate_line


def _line(**kwargs):
    data = {"quantity": Decimal("2"), "unit_price_cents": 10000, "vat_rate_percent": Decimal("20")}
    data.update(kwargs)
    return LineInput(**data)


def test_simple_line():
    result = calculate_line(_line())
    assert result.net_amount_cents == 20000
    assert result.vat_amount_cents == 4000
    assert result.gross_amount_cents == 24000
    assert result.surcharge_amount_cents == 0
    assert result.discount_amount_cents == 0


def test_surcharge_before_vat():
    result = calculate_line(_line(), surcharge_rate_percent=Decimal("10"))
    assert result.surcharge_amount_cents == 2000
    assert result.vat_amount_cents == 4400
    assert result.gross_amount_cents == 26400


def test_surcharge_after_vat_leaves_vat_base_alone():
    result = calculate_line(
        _line(),
        surcharge_rate_percent=Decimal("10"),
        surcharge_calculation_order=CalculationOrder.AFTER_TVA,
    )
    assert result.surcharge_amount_cents == 2000
    assert result.vat_amount_cents == 4000
    assert result.gross_amount_cents == 26000


def test_rate_discount():
    result = calculate_line(_line(discount=DiscountRate(percent=Decimal("15"))))
    assert result.discount_amount_cents == 3000
    assert result.discount_rate_percent == Decimal("15")
    assert result.net_amount_cents == 17000
    assert result.vat_amount_cents == 3400


def test_amount_discount_is_clipped_to_base():
    result = calculate_line(_line(discount=DiscountAmount(cents=50000)))
    assert result.discount_amount_cents == 20000
    assert result.net_amount_cents == 0
    assert result.gross_amount_cents == 0


def test_fractional_quantity_rounding():
    line = LineInput(quantity=Decimal("0.333"), unit_price_cents=1000, vat_rate_percent=Decimal("19"))
    result = calculate_line(line)
    assert result.net_amount_cents == 333
    assert result.vat_amount_cents == 63  # 63.27

    up = calculate_line(line, rounding_mode=RoundingMode.UP)
    assert up.vat_amount_cents == 64


def test_zero_quantity():
    result = calculate_line(_line(quantity=Decimal("0")))
    assert result.gross_amount_cents == 0


def test_zero_surcharge_rate_is_no_surcharge():
    result = calculate_line(_line(), surcharge_rate_percent=Decimal("0"))
    assert result.surcharge_amount_cents == 0
    assert result.surcharge_rate_percent == Decimal("0")


def test_gross_is_sum_of_parts():
    result = calculate_line(
        _line(quantity=Decimal("3.5"), unit_price_cents=1999, discount=DiscountRate(percent=Decimal("7.5"))),
        surcharge_rate_percent=Decimal("1"),
    )
    assert result.gross_amount_cents == (
        result.net_amount_cents + result.surcharge_amount_cents + result.vat_amount_cents
    )


@pytest.mark.parametrize(
    "field, value",
    [("quantity", Decimal("-1")), ("unit_price_cents", -5), ("vat_rate_percent", Decimal("-19"))],
)
def test_negative_inputs_rejected(field, value):
    with pytest.raises(ValidationError):
        _line(**{field: value})


def test_negative_surcharge_rate_rejected():
    with pytest.raises(ValueError):
        calculate_line(_line(), surcharge_rate_percent=Decimal("-1"))


def test_discount_from_legacy_fields():
    assert discount_from_fields(None, None).type == "none"
    assert discount_from_fields("10", None) == DiscountRate(percent=Decimal("10"))
    assert discount_from_fields(0, None).type == "none"
    # le montant l'emporte
    assert discount_from_fields(10, 500) == DiscountAmount(cents=500)
