from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, List, Optional

from facturier.errors import DocumentNotFoundError, InvalidStatusTransitionError
from facturier.models.common import DocumentType, gen_id, utcnow
from facturier.models.document import Invoice, InvoiceStatus, Quote, QuoteInput, QuoteStatus
from facturier.services.document_service import DocumentService
from facturier.services.invoice_service import InvoiceService
from facturier.services.lifecycle_service import DeletionOutcome
from facturier.storage.repo import copy_document_row

logger = logging.getLogger(__name__)


def _unique_ids(ids: Iterable[str]) -> List[str]:
    # ordre conservé, identifiants vides ignorés
    return list(dict.fromkeys(i for i in ids if i))


class QuoteService(DocumentService):
    document_type = DocumentType.QUOTE

    def __init__(self, db, *, invoices: Optional[InvoiceService] = None, **kwargs):
        super().__init__(db, **kwargs)
        self.invoices = invoices or InvoiceService(
            db, settings=self.settings, sequences=self.sequences, lifecycle=self.lifecycle
        )

    # ----------- CRUD/list -----------
    def create_quote(self, owner_id: str, payload: QuoteInput) -> Quote:
        return self._create(owner_id, payload)

    def get_quote(self, quote_id: str, owner_id: Optional[str] = None) -> Optional[Quote]:
        return self._get(quote_id, owner_id)

    def list_quotes(
        self,
        owner_id: str,
        *,
        status: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> List[Quote]:
        return self._list(owner_id, status=status, client_id=client_id)

    def update_quote(self, owner_id: str, quote_id: str, payload: QuoteInput) -> Quote:
        return self._update(owner_id, quote_id, payload)

    def change_status(self, owner_id: str, quote_id: str, status: str) -> Quote:
        return self._change_status(owner_id, quote_id, status)

    def delete_quote(self, owner_id: str, quote_id: str) -> DeletionOutcome:
        return self._delete(owner_id, quote_id)

    def duplicate_quote(self, owner_id: str, quote_id: str, *, today: Optional[date] = None) -> Quote:
        return self._duplicate(owner_id, quote_id, today=today)

    # ----------- Actions groupées -----------
    def change_quotes_status_bulk(self, owner_id: str, quote_ids: Iterable[str], status: str) -> int:
        """Renvoie le nombre de devis passés au statut demandé (introuvables et refus ignorés)."""
        status = QuoteStatus(status).value
        changed = 0
        for quote_id in _unique_ids(quote_ids):
            current = self.get_quote(quote_id, owner_id)
            if current is None:
                logger.warning("Bulk status change: quote %s not found", quote_id)
                continue
            try:
                updated = self.change_status(owner_id, quote_id, status)
            except (DocumentNotFoundError, InvalidStatusTransitionError) as exc:
                logger.warning("Bulk status change skipped for quote %s: %s", quote_id, exc)
                continue
            if updated.status is not current.status:
                changed += 1
        return changed

    def delete_quotes_bulk(self, owner_id: str, quote_ids: Iterable[str]) -> int:
        """Suppression groupée : brouillons supprimés, devis publiés annulés. Renvoie le nombre traité."""
        count = 0
        for quote_id in _unique_ids(quote_ids):
            try:
                outcome = self.delete_quote(owner_id, quote_id)
            except DocumentNotFoundError:
                logger.warning("Bulk deletion: quote %s not found", quote_id)
                continue
            if outcome is not DeletionOutcome.ALREADY_CANCELLED:
                count += 1
        return count

    # ----------- Conversion -----------
    def convert_to_invoice(self, owner_id: str, quote_id: str, *, today: Optional[date] = None) -> Invoice:
        """Devis -> facture envoyée, totaux recopiés sans recalcul. Idempotent."""
        existing = self.invoices.list_by_quote(quote_id, owner_id)
        if existing:
            return existing[0]

        quote = self.get_quote(quote_id, owner_id)
        if quote is None:
            raise DocumentNotFoundError(self.document_type.value, quote_id)
        if quote.status is QuoteStatus.CANCELLED:
            raise InvalidStatusTransitionError(self.document_type.value, quote.status.value, QuoteStatus.ACCEPTED.value)

        number = self.invoices.sequences.next_number(DocumentType.INVOICE, owner_id)

        with self.db.transaction() as session:
            source = self.repo.load_row(session, quote_id, owner_id, for_update=True)
            if source.status == QuoteStatus.CANCELLED.value:
                raise InvalidStatusTransitionError(self.document_type.value, source.status, QuoteStatus.ACCEPTED.value)
            # conversion concurrente déjà enregistrée : le numéro réservé reste un trou
            already = self.invoices.repo.load_by_quote(session, source.id)
            if already is not None:
                existing_invoice = self.invoices.repo.to_model(already)
                logger.info("Quote %s already converted into invoice %s", quote_id, already.number)
                return existing_invoice
            row = copy_document_row(
                source,
                id=gen_id(),
                number=number,
                status=InvoiceStatus.SENT.value,
                quote_id=source.id,
                issue_date=today or date.today(),
            )
            self.invoices.repo.add(session, row)
            source.status = QuoteStatus.ACCEPTED.value
            source.updated_at = utcnow()
            invoice = self.invoices.repo.to_model(row)

        logger.info("Quote %s converted into invoice %s", quote_id, invoice.number)
        return invoice
