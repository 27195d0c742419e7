"""Tax configuration and persisted tax summary.

The configuration is injected read-only into the engine. It is validated once,
when loaded: an unknown rounding mode or tax kind is rejected there, never
during a calculation.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import ConfigDict, Field, ValidationError, field_validator

from facturier.errors import ConfigurationError
from facturier.models.common import CamelModel, Cents, Percent, RoundingMode


class TaxKind(str, Enum):
    SURCHARGE = "SURCHARGE"  # FODEC
    VAT = "VAT"  # TVA
    STAMP = "STAMP"  # timbre fiscal


CANONICAL_TAX_ORDER = (TaxKind.SURCHARGE, TaxKind.VAT, TaxKind.STAMP)

# anciens libellés encore présents dans des configurations enregistrées
_LEGACY_KIND_NAMES = {
    "FODEC": TaxKind.SURCHARGE,
    "TVA": TaxKind.VAT,
    "TIMBRE": TaxKind.STAMP,
}


class SurchargeScope(str, Enum):
    LINE = "line"
    DOCUMENT = "document"


class CalculationOrder(str, Enum):
    BEFORE_TVA = "BEFORE_TVA"  # la TVA porte sur net + FODEC
    AFTER_TVA = "AFTER_TVA"  # la TVA porte sur le net seul


class _ConfigModel(CamelModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class VatRateDefinition(_ConfigModel):
    code: str
    label: str
    rate: Percent


class VatSettings(_ConfigModel):
    rates: List[VatRateDefinition] = Field(
        default_factory=lambda: [
            VatRateDefinition(code="T19", label="TVA 19%", rate=Decimal("19")),
            VatRateDefinition(code="T7", label="TVA 7%", rate=Decimal("7")),
            VatRateDefinition(code="EXON", label="Exonération", rate=Decimal("0")),
        ]
    )
    apply_mode: Literal["line", "document"] = "line"
    allow_exemption: bool = True


class SurchargeSettings(_ConfigModel):
    enabled: bool = True
    rate: Percent = Decimal("1")
    application: SurchargeScope = SurchargeScope.LINE
    calculation_order: CalculationOrder = CalculationOrder.BEFORE_TVA
    auto_apply: bool = True


class StampSettings(_ConfigModel):
    enabled: bool = True
    amount_cents: Cents = 1000
    auto_apply: bool = True


class RoundingSettings(_ConfigModel):
    line: RoundingMode = RoundingMode.NEAREST_CENT
    total: RoundingMode = RoundingMode.NEAREST_CENT


class TaxConfiguration(_ConfigModel):
    vat: VatSettings = Field(default_factory=VatSettings, alias="tva")
    fodec: SurchargeSettings = Field(default_factory=SurchargeSettings)
    timbre: StampSettings = Field(default_factory=StampSettings)
    order: List[TaxKind] = Field(default_factory=lambda: list(CANONICAL_TAX_ORDER))
    rounding: RoundingSettings = Field(default_factory=RoundingSettings)

    @field_validator("order", mode="before")
    @classmethod
    def _normalize_order(cls, value: Any) -> List[TaxKind]:
        if value is None:
            return list(CANONICAL_TAX_ORDER)
        if not isinstance(value, (list, tuple)):
            raise ValueError("order must be a list of tax kinds")
        seen: List[TaxKind] = []
        for item in value:
            if isinstance(item, TaxKind):
                kind = item
            else:
                raw = str(item).strip().upper()
                kind = _LEGACY_KIND_NAMES.get(raw)
                if kind is None:
                    try:
                        kind = TaxKind(raw)
                    except ValueError:
                        raise ValueError(f"unknown tax kind in order: {item!r}") from None
            if kind in seen:
                raise ValueError(f"duplicate tax kind in order: {kind.value}")
            seen.append(kind)
        # les types absents sont ajoutés dans l'ordre canonique
        for kind in CANONICAL_TAX_ORDER:
            if kind not in seen:
                seen.append(kind)
        return seen

    def order_index(self) -> dict:
        return {kind: idx for idx, kind in enumerate(self.order)}


DEFAULT_TAX_CONFIGURATION = TaxConfiguration()


def load_tax_configuration(raw: Any) -> TaxConfiguration:
    """Valide une configuration brute (dict JSON ou modèle). Lève ConfigurationError."""
    if raw is None:
        return DEFAULT_TAX_CONFIGURATION
    if isinstance(raw, TaxConfiguration):
        return raw
    if not isinstance(raw, dict):
        raise ConfigurationError(f"tax configuration must be an object, got {type(raw).__name__}")
    try:
        return TaxConfiguration.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid tax configuration: {exc}") from exc


# ---------------- Résumé des taxes (persisté tel quel) ---------------- #

def format_rate(rate: Decimal) -> str:
    return format(rate.normalize(), "f")


class _SummaryEntry(CamelModel):
    model_config = ConfigDict(frozen=True)

    label: str
    base_cents: int = 0
    amount_cents: int


class VatSummary(_SummaryEntry):
    kind: Literal["VAT"] = "VAT"
    rate_percent: Percent


class SurchargeSummary(_SummaryEntry):
    kind: Literal["SURCHARGE"] = "SURCHARGE"
    rate_percent: Optional[Percent] = None


class StampSummary(_SummaryEntry):
    kind: Literal["STAMP"] = "STAMP"
    base_cents: int = 0


TaxSummaryEntry = Annotated[
    Union[VatSummary, SurchargeSummary, StampSummary],
    Field(discriminator="kind"),
]
