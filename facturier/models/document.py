from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field

from facturier.models.common import Cents, DocumentType, Percent, TimeStamped
from facturier.models.line import Discount, DocumentLineInput, NoDiscount, TaxOptions
from facturier.models.tax import TaxConfiguration, TaxSummaryEntry
from facturier.models.totals import VatBucket


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


STATUS_ENUMS = {
    DocumentType.INVOICE: InvoiceStatus,
    DocumentType.QUOTE: QuoteStatus,
}


def parse_status(document_type: DocumentType, value: str) -> Union[InvoiceStatus, QuoteStatus]:
    return STATUS_ENUMS[DocumentType(document_type)](value)


class AuditAction(str, Enum):
    DELETION = "DELETION"
    CANCELLATION = "CANCELLATION"


# ---------------- Entrées ---------------- #

class DocumentInput(BaseModel):
    """Données du formulaire facture / devis."""

    client_id: Optional[str] = None
    reference: Optional[str] = None
    issue_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None
    currency: Optional[str] = None
    lines: List[DocumentLineInput] = Field(default_factory=list)
    discount: Discount = Field(default_factory=NoDiscount)
    taxes: TaxOptions = Field(default_factory=TaxOptions)
    notes: Optional[str] = None
    terms: Optional[str] = None
    # numéro imposé (import); sinon attribué à la première sauvegarde
    number: Optional[str] = None


class InvoiceInput(DocumentInput):
    status: InvoiceStatus = InvoiceStatus.DRAFT


class QuoteInput(DocumentInput):
    status: QuoteStatus = QuoteStatus.DRAFT


# ---------------- Documents enregistrés ---------------- #

class DocumentLine(BaseModel):
    position: int = 0
    product_id: Optional[str] = None
    description: str = ""
    unit: str = "unité"
    quantity: Decimal
    unit_price_cents: int
    vat_rate_percent: Percent
    discount_rate_percent: Optional[Percent] = None
    discount_amount_cents: int = 0
    global_discount_share_cents: int = 0
    net_amount_cents: int = 0
    surcharge_rate_percent: Optional[Percent] = None
    surcharge_amount_cents: int = 0
    vat_amount_cents: int = 0
    gross_amount_cents: int = 0


class Payment(BaseModel):
    id: str
    amount_cents: Cents
    method: Optional[str] = None
    paid_at: date
    note: Optional[str] = None


class FinancialDocument(TimeStamped):
    id: str
    owner_id: str
    document_type: DocumentType
    number: str
    reference: Optional[str] = None
    client_id: Optional[str] = None
    currency: str = "TND"
    issue_date: date
    due_date: Optional[date] = None

    global_discount_rate_percent: Optional[Percent] = None
    global_discount_amount_cents: Optional[int] = None

    subtotal_net_cents: int = 0
    total_discount_cents: int = 0
    global_discount_applied_cents: int = 0
    total_vat_cents: int = 0
    surcharge_amount_cents: int = 0
    stamp_amount_cents: int = 0
    total_gross_cents: int = 0
    amount_paid_cents: int = 0

    vat_breakdown: List[VatBucket] = Field(default_factory=list)
    tax_summary: List[TaxSummaryEntry] = Field(default_factory=list)
    tax_configuration: Optional[TaxConfiguration] = None

    lines: List[DocumentLine] = Field(default_factory=list)
    payments: List[Payment] = Field(default_factory=list)
    notes: Optional[str] = None
    terms: Optional[str] = None

    # helpers
    def remaining_cents(self) -> int:
        return max(0, self.total_gross_cents - self.amount_paid_cents)


class Invoice(FinancialDocument):
    document_type: DocumentType = DocumentType.INVOICE
    status: InvoiceStatus = InvoiceStatus.DRAFT
    quote_id: Optional[str] = None


class Quote(FinancialDocument):
    document_type: DocumentType = DocumentType.QUOTE
    status: QuoteStatus = QuoteStatus.DRAFT


class AuditLogEntry(BaseModel):
    id: int
    document_id: str
    document_type: DocumentType
    owner_id: str
    document_number: Optional[str] = None
    action: AuditAction
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime
