from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from facturier.models.common import CamelModel, Cents, Percent, Quantity


# ---------------- Remise : une seule forme fait foi ---------------- #

class NoDiscount(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["none"] = "none"


class DiscountRate(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["rate"] = "rate"
    percent: Percent


class DiscountAmount(BaseModel):
    model_config = ConfigDict(frozen=True)
    type: Literal["amount"] = "amount"
    cents: Cents


Discount = Annotated[Union[NoDiscount, DiscountRate, DiscountAmount], Field(discriminator="type")]


def discount_from_fields(
    rate_percent: Optional[Decimal | float | int | str] = None,
    amount_cents: Optional[int] = None,
) -> Union[NoDiscount, DiscountRate, DiscountAmount]:
    """Forme historique (taux + montant nullable) -> Discount. Le montant l'emporte."""
    if amount_cents is not None:
        return DiscountAmount(cents=amount_cents)
    if rate_percent not in (None, ""):
        rate = Decimal(str(rate_percent))
        if rate:
            return DiscountRate(percent=rate)
    return NoDiscount()


# ---------------- Lignes ---------------- #

class LineInput(BaseModel):
    quantity: Quantity = Decimal("1")
    unit_price_cents: Cents = 0
    vat_rate_percent: Percent = Decimal("0")
    discount: Discount = Field(default_factory=NoDiscount)


class DocumentLineInput(LineInput):
    """Ligne saisie dans le formulaire (facture ou devis)."""

    description: str = ""
    unit: str = "unité"
    product_id: Optional[str] = None
    # None -> taux FODEC de la configuration
    surcharge_rate_percent: Optional[Percent] = None


class LineResult(CamelModel):
    model_config = ConfigDict(frozen=True)

    quantity: Quantity
    unit_price_cents: int
    vat_rate_percent: Percent
    discount_rate_percent: Optional[Percent] = None
    discount_amount_cents: int = 0
    # part de la remise globale (0 tant que la ligne n'est pas agrégée)
    global_discount_share_cents: int = 0
    net_amount_cents: int = 0
    surcharge_rate_percent: Optional[Percent] = None
    surcharge_amount_cents: int = 0
    vat_amount_cents: int = 0
    gross_amount_cents: int = 0

    @property
    def base_amount_cents(self) -> int:
        return self.net_amount_cents + self.discount_amount_cents + self.global_discount_share_cents


class TaxOptions(CamelModel):
    """Choix faits sur le document (cases « appliquer FODEC / timbre »)."""

    apply_surcharge: Optional[bool] = None
    apply_stamp: Optional[bool] = None
    document_surcharge_rate_percent: Optional[Percent] = None
    stamp_amount_cents: Optional[Cents] = None
