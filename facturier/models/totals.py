from __future__ import annotations

from typing import List

from pydantic import ConfigDict, Field

from facturier.models.common import CamelModel, Percent
from facturier.models.line import LineResult
from facturier.models.tax import TaxConfiguration, TaxSummaryEntry


class VatBucket(CamelModel):
    model_config = ConfigDict(frozen=True)

    rate_percent: Percent
    base_cents: int = 0
    amount_cents: int = 0


class DocumentTotals(CamelModel):
    model_config = ConfigDict(frozen=True)

    subtotal_net_cents: int = 0
    total_discount_cents: int = 0
    total_vat_cents: int = 0
    total_gross_cents: int = 0
    global_discount_applied_cents: int = 0
    surcharge_amount_cents: int = 0
    stamp_amount_cents: int = 0
    vat_buckets: List[VatBucket] = Field(default_factory=list)
    tax_summary: List[TaxSummaryEntry] = Field(default_factory=list)
    lines: List[LineResult] = Field(default_factory=list)

    @property
    def total_taxes_cents(self) -> int:
        return self.surcharge_amount_cents + self.total_vat_cents + self.stamp_amount_cents

    def tax_summary_json(self) -> List[dict]:
        """Forme persistée : [{kind, ratePercent?, label, baseCents, amountCents}, ...]."""
        return [entry.to_json_dict() for entry in self.tax_summary]

    def vat_breakdown_json(self) -> List[dict]:
        return [bucket.to_json_dict() for bucket in self.vat_buckets]


class ComputedDocument(CamelModel):
    """Résultat complet du calcul d'un document, prêt à être enregistré."""

    totals: DocumentTotals
    # configuration réellement appliquée (instantané stocké avec le document)
    tax_configuration: TaxConfiguration
