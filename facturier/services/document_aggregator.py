"""Document totals: global discount, FODEC, VAT buckets, stamp duty, tax summary.

Everything here is pure: identical inputs give identical totals, and every
rounding remainder is absorbed when it is allocated so that the document
always equals the sum of its parts.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from facturier.models.line import (
    DiscountAmount,
    DiscountRate,
    DocumentLineInput,
    LineResult,
    NoDiscount,
    TaxOptions,
)
from facturier.models.tax import (
    DEFAULT_TAX_CONFIGURATION,
    CalculationOrder,
    StampSummary,
    SurchargeScope,
    SurchargeSummary,
    TaxConfiguration,
    TaxKind,
    VatSummary,
    format_rate,
)
from facturier.models.totals import ComputedDocument, DocumentTotals, VatBucket
from facturier.services.line_calculator import calculate_line
from facturier.services.rounding import allocate_proportionally, percentage_of

AnyDiscount = Union[NoDiscount, DiscountRate, DiscountAmount]

SURCHARGE_LABEL = "FODEC"
STAMP_LABEL = "Timbre fiscal"


# ---------------- Helpers ---------------- #

def _global_discount(subtotal: int, discount: AnyDiscount) -> int:
    # pas de remise globale sur un sous-total nul
    if subtotal <= 0:
        return 0
    if isinstance(discount, DiscountAmount):
        requested = discount.cents
    elif isinstance(discount, DiscountRate):
        requested = percentage_of(subtotal, discount.percent)
    else:
        requested = 0
    return min(requested, subtotal)


def _resolve_surcharge(
    lines: Sequence[LineResult],
    nets: Sequence[int],
    config: TaxConfiguration,
    active: bool,
    document_rate: Optional[Decimal],
) -> Tuple[List[Optional[Decimal]], List[int], Optional[SurchargeSummary]]:
    count = len(lines)
    rates: List[Optional[Decimal]] = [None] * count
    amounts = [0] * count
    if not active:
        return rates, amounts, None

    fodec = config.fodec
    if fodec.application == SurchargeScope.LINE:
        base = 0
        for idx, line in enumerate(lines):
            rate = line.surcharge_rate_percent if line.surcharge_rate_percent is not None else fodec.rate
            if rate and rate > 0:
                rates[idx] = rate
                amounts[idx] = percentage_of(nets[idx], rate, config.rounding.line)
                base += nets[idx]
        distinct = {rate for rate in rates if rate is not None}
        summary_rate = distinct.pop() if len(distinct) == 1 else None
    else:
        rate = document_rate if document_rate is not None else fodec.rate
        if not rate or rate <= 0:
            return rates, amounts, None
        base = sum(nets)
        total = percentage_of(base, rate, config.rounding.total)
        amounts = allocate_proportionally(total, nets, config.rounding.total)
        rates = [rate] * count
        summary_rate = rate

    total = sum(amounts)
    if total <= 0:
        return rates, amounts, None
    label = SURCHARGE_LABEL if summary_rate is None else f"{SURCHARGE_LABEL} {format_rate(summary_rate)}%"
    summary = SurchargeSummary(label=label, rate_percent=summary_rate, base_cents=base, amount_cents=total)
    return rates, amounts, summary


def _summary_sort_key(order_index: Dict[TaxKind, int]):
    def key(entry) -> tuple:
        kind = TaxKind(entry.kind)
        if kind is TaxKind.VAT:
            return (order_index[kind], entry.rate_percent, "")
        return (order_index[kind], Decimal(0), entry.label)

    return key


# ---------------- Agrégation ---------------- #

def aggregate_document(
    lines: Iterable[LineResult],
    *,
    discount: Optional[AnyDiscount] = None,
    config: Optional[TaxConfiguration] = None,
    apply_surcharge: Optional[bool] = None,
    apply_stamp: Optional[bool] = None,
    document_surcharge_rate_percent: Optional[Decimal] = None,
    stamp_amount_cents_override: Optional[int] = None,
) -> DocumentTotals:
    """Totaux du document à partir des lignes calculées (avant FODEC document).

    Les ``LineResult`` reçus ne sont pas modifiés; les lignes agrégées
    (remise globale, FODEC et TVA définitifs) sont renvoyées dans
    ``DocumentTotals.lines``.
    """
    config = config or DEFAULT_TAX_CONFIGURATION
    discount = discount or NoDiscount()
    lines = list(lines)

    nets = [line.net_amount_cents for line in lines]
    subtotal = sum(nets)
    per_line_discount = sum(line.discount_amount_cents for line in lines)

    # 1) remise globale répartie au prorata des nets
    applied = _global_discount(subtotal, discount)
    shares = allocate_proportionally(applied, nets, config.rounding.total, capped=True)
    nets_after = [net - share for net, share in zip(nets, shares)]

    # 2) FODEC
    surcharge_active = config.fodec.enabled and apply_surcharge is not False
    surcharge_rates, surcharges, surcharge_summary = _resolve_surcharge(
        lines, nets_after, config, surcharge_active, document_surcharge_rate_percent
    )
    surcharge_total = sum(surcharges)

    # 3) TVA par taux
    vat_before_surcharge = config.fodec.calculation_order == CalculationOrder.BEFORE_TVA
    buckets: Dict[Decimal, List[int]] = {}
    bucket_rates: Dict[Decimal, Decimal] = {}
    aggregated: List[LineResult] = []
    total_vat = 0
    for idx, line in enumerate(lines):
        vat_base = nets_after[idx] + (surcharges[idx] if vat_before_surcharge else 0)
        vat = percentage_of(vat_base, line.vat_rate_percent, config.rounding.line)
        total_vat += vat
        bucket = buckets.setdefault(line.vat_rate_percent, [0, 0])
        bucket_rates.setdefault(line.vat_rate_percent, line.vat_rate_percent)
        bucket[0] += vat_base
        bucket[1] += vat
        aggregated.append(
            line.model_copy(
                update={
                    "global_discount_share_cents": shares[idx],
                    "net_amount_cents": nets_after[idx],
                    "surcharge_rate_percent": surcharge_rates[idx],
                    "surcharge_amount_cents": surcharges[idx],
                    "vat_amount_cents": vat,
                    "gross_amount_cents": nets_after[idx] + surcharges[idx] + vat,
                }
            )
        )

    vat_buckets = [
        VatBucket(rate_percent=bucket_rates[rate], base_cents=values[0], amount_cents=values[1])
        for rate, values in sorted(buckets.items(), key=lambda item: item[0])
    ]

    # 4) timbre : montant fixe, niveau document uniquement, jamais sur un document à zéro
    stamp_active = subtotal > 0 and config.timbre.enabled and (
        apply_stamp if apply_stamp is not None else config.timbre.auto_apply
    )
    stamp = 0
    if stamp_active:
        amount = stamp_amount_cents_override if stamp_amount_cents_override is not None else config.timbre.amount_cents
        stamp = max(0, int(amount))

    total_gross = sum(nets_after) + surcharge_total + total_vat + stamp

    # 5) résumé des taxes, trié selon l'ordre configuré
    summary: list = []
    if surcharge_summary is not None:
        summary.append(surcharge_summary)
    for bucket in vat_buckets:
        summary.append(
            VatSummary(
                label=f"TVA {format_rate(bucket.rate_percent)}%",
                rate_percent=bucket.rate_percent,
                base_cents=bucket.base_cents,
                amount_cents=bucket.amount_cents,
            )
        )
    if stamp > 0:
        summary.append(StampSummary(label=STAMP_LABEL, amount_cents=stamp))
    summary.sort(key=_summary_sort_key(config.order_index()))

    return DocumentTotals(
        subtotal_net_cents=subtotal,
        total_discount_cents=per_line_discount + applied,
        total_vat_cents=total_vat,
        total_gross_cents=total_gross,
        global_discount_applied_cents=applied,
        surcharge_amount_cents=surcharge_total,
        stamp_amount_cents=stamp,
        vat_buckets=vat_buckets,
        tax_summary=summary,
        lines=aggregated,
    )


def compute_document(
    line_inputs: Iterable[DocumentLineInput],
    *,
    discount: Optional[AnyDiscount] = None,
    config: Optional[TaxConfiguration] = None,
    options: Optional[TaxOptions] = None,
) -> ComputedDocument:
    """Calcule lignes + totaux d'une facture/devis et l'instantané de configuration appliqué."""
    config = config or DEFAULT_TAX_CONFIGURATION
    options = options or TaxOptions()

    apply_surcharge = config.fodec.enabled and (
        options.apply_surcharge if options.apply_surcharge is not None else config.fodec.auto_apply
    )
    apply_stamp = config.timbre.enabled and (
        options.apply_stamp if options.apply_stamp is not None else config.timbre.auto_apply
    )
    line_scope = config.fodec.application == SurchargeScope.LINE

    results = [
        calculate_line(
            line,
            surcharge_rate_percent=(
                (line.surcharge_rate_percent if line.surcharge_rate_percent is not None else config.fodec.rate)
                if apply_surcharge and line_scope
                else None
            ),
            surcharge_calculation_order=config.fodec.calculation_order,
            rounding_mode=config.rounding.line,
        )
        for line in line_inputs
    ]

    document_rate: Optional[Decimal] = None
    if apply_surcharge and not line_scope:
        document_rate = (
            options.document_surcharge_rate_percent
            if options.document_surcharge_rate_percent is not None
            else config.fodec.rate
        )

    totals = aggregate_document(
        results,
        discount=discount,
        config=config,
        apply_surcharge=apply_surcharge,
        apply_stamp=apply_stamp,
        document_surcharge_rate_percent=document_rate,
        stamp_amount_cents_override=options.stamp_amount_cents,
    )

    snapshot = config.model_copy(
        update={
            "fodec": config.fodec.model_copy(
                update={
                    "enabled": apply_surcharge,
                    "auto_apply": apply_surcharge,
                    "rate": document_rate if document_rate is not None else config.fodec.rate,
                }
            ),
            "timbre": config.timbre.model_copy(
                update={"enabled": apply_stamp, "amount_cents": totals.stamp_amount_cents}
            ),
        }
    )
    return ComputedDocument(totals=totals, tax_configuration=snapshot)
