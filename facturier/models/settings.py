from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, field_validator

from facturier.models.common import DocumentType, Percent
from facturier.models.tax import TaxConfiguration, load_tax_configuration
from facturier.services.currency import is_supported


class OwnerSettings(BaseModel):
    """Réglages d'un compte (numérotation, devise, taxes)."""

    owner_id: str
    currency: str = "TND"
    default_vat_rate: Percent = Decimal("19")
    invoice_prefix: str = Field(default="FAC", min_length=2)
    quote_prefix: str = Field(default="DEV", min_length=2)
    reset_numbering_annually: bool = True
    tax_configuration: TaxConfiguration = Field(default_factory=TaxConfiguration)

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, value: str) -> str:
        code = (value or "").strip().upper()
        if not is_supported(code):
            raise ValueError(f"unsupported currency: {value!r}")
        return code

    @field_validator("invoice_prefix", "quote_prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        return value.strip()

    @field_validator("tax_configuration", mode="before")
    @classmethod
    def _load_tax_configuration(cls, value: Any) -> TaxConfiguration:
        return load_tax_configuration(value)

    def prefix_for(self, document_type: DocumentType) -> str:
        if DocumentType(document_type) is DocumentType.QUOTE:
            return self.quote_prefix
        return self.invoice_prefix
