from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from typing import List, Optional

from sqlalchemy import select

from facturier.errors import DocumentNotFoundError, PaymentError
from facturier.models.common import DocumentType, gen_id
from facturier.models.document import Invoice, InvoiceInput, InvoiceStatus, Payment
from facturier.services.document_service import DocumentService
from facturier.services.lifecycle_service import DeletionOutcome
from facturier.storage.repo import STATUS_ALL
from facturier.storage.tables import DocumentRow, PaymentRow

logger = logging.getLogger(__name__)

# pas de paiement sur un brouillon (non émis) ni sur une facture annulée
_NO_PAYMENT_STATUSES = {InvoiceStatus.DRAFT.value, InvoiceStatus.CANCELLED.value}


class DueStatus(str, Enum):
    DRAFT = "draft"
    PAID = "paid"
    ON_TIME = "on-time"
    LATE = "late"


def compute_due_status(
    due_date: Optional[date],
    status: str,
    amount_due_cents: int,
    today: Optional[date] = None,
) -> DueStatus:
    if InvoiceStatus(status) is InvoiceStatus.DRAFT:
        return DueStatus.DRAFT
    if amount_due_cents <= 0:
        return DueStatus.PAID
    if due_date is None:
        return DueStatus.ON_TIME
    return DueStatus.LATE if due_date < (today or date.today()) else DueStatus.ON_TIME


def status_after_payment(
    status: str,
    total_gross_cents: int,
    amount_paid_cents: int,
    due_date: Optional[date],
    today: Optional[date] = None,
) -> InvoiceStatus:
    """Statut déduit des encaissements. Une facture annulée le reste."""
    current = InvoiceStatus(status)
    if current is InvoiceStatus.CANCELLED:
        return current
    if total_gross_cents - amount_paid_cents <= 0:
        return InvoiceStatus.PAID
    late = due_date is not None and due_date < (today or date.today())
    if late:
        return InvoiceStatus.OVERDUE
    if amount_paid_cents > 0:
        return InvoiceStatus.PARTIAL
    return InvoiceStatus.DRAFT if current is InvoiceStatus.DRAFT else InvoiceStatus.SENT


def _payment_model(row: PaymentRow) -> Payment:
    return Payment(id=row.id, amount_cents=row.amount_cents, method=row.method, paid_at=row.paid_at, note=row.note)


class InvoiceService(DocumentService):
    document_type = DocumentType.INVOICE

    # ----------- CRUD/list -----------
    def create_invoice(self, owner_id: str, payload: InvoiceInput, *, quote_id: Optional[str] = None) -> Invoice:
        return self._create(owner_id, payload, quote_id=quote_id)

    def get_invoice(self, invoice_id: str, owner_id: Optional[str] = None) -> Optional[Invoice]:
        return self._get(invoice_id, owner_id)

    def list_invoices(
        self,
        owner_id: str,
        *,
        status: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> List[Invoice]:
        return self._list(owner_id, status=status, client_id=client_id)

    def list_by_quote(self, quote_id: str, owner_id: Optional[str] = None) -> List[Invoice]:
        return self.repo.list_all(owner_id, status=STATUS_ALL, quote_id=quote_id)

    def update_invoice(self, owner_id: str, invoice_id: str, payload: InvoiceInput) -> Invoice:
        return self._update(owner_id, invoice_id, payload)

    def delete_invoice(self, owner_id: str, invoice_id: str) -> DeletionOutcome:
        return self._delete(owner_id, invoice_id)

    def duplicate_invoice(self, owner_id: str, invoice_id: str, *, today: Optional[date] = None) -> Invoice:
        return self._duplicate(owner_id, invoice_id, today=today)

    # ----------- Statut -----------
    def change_status(self, owner_id: str, invoice_id: str, status: str) -> Invoice:
        def _sync_paid(row: DocumentRow) -> None:
            paid = sum(p.amount_cents for p in row.payments)
            if row.status == InvoiceStatus.PAID.value:
                # marquée payée à la main : solde considéré comme réglé
                paid = max(paid, row.total_gross_cents)
            row.amount_paid_cents = paid

        return self._change_status(owner_id, invoice_id, status, on_change=_sync_paid)

    # ----------- Paiements -----------
    def record_payment(
        self,
        owner_id: str,
        invoice_id: str,
        amount_cents: int,
        *,
        paid_at: Optional[date] = None,
        method: Optional[str] = None,
        note: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Payment:
        if not isinstance(amount_cents, int) or amount_cents <= 0:
            raise PaymentError(f"invalid payment amount: {amount_cents!r}")

        with self.db.transaction() as session:
            row = self.repo.load_row(session, invoice_id, owner_id, for_update=True)
            if row.status in _NO_PAYMENT_STATUSES:
                raise PaymentError(f"invoice {row.number} is {row.status}: payments not accepted")
            payment = PaymentRow(
                id=gen_id(),
                owner_id=row.owner_id,
                amount_cents=amount_cents,
                method=method,
                paid_at=paid_at or date.today(),
                note=note,
            )
            row.payments.append(payment)
            self._reconcile(row, today)
            session.flush()
            result = _payment_model(payment)
            number, status = row.number, row.status

        logger.info("Payment of %s recorded on invoice %s (now %s)", amount_cents, number, status)
        return result

    def delete_payment(self, owner_id: str, payment_id: str, *, today: Optional[date] = None) -> Invoice:
        with self.db.transaction() as session:
            payment = session.scalars(
                select(PaymentRow).where(PaymentRow.id == payment_id, PaymentRow.owner_id == owner_id)
            ).first()
            if payment is None:
                raise DocumentNotFoundError("PAYMENT", payment_id)
            row = self.repo.load_row(session, payment.document_id, owner_id, for_update=True)
            row.payments.remove(payment)
            self._reconcile(row, today)
            session.flush()
            document = self.repo.to_model(row)

        logger.info("Payment %s removed from invoice %s (now %s)", payment_id, document.number, document.status.value)
        return document

    @staticmethod
    def _reconcile(row: DocumentRow, today: Optional[date]) -> None:
        paid = sum(p.amount_cents for p in row.payments)
        row.amount_paid_cents = paid
        row.status = status_after_payment(row.status, row.total_gross_cents, paid, row.due_date, today).value

    def due_status(self, invoice: Invoice, today: Optional[date] = None) -> DueStatus:
        return compute_due_status(invoice.due_date, invoice.status.value, invoice.remaining_cents(), today)
