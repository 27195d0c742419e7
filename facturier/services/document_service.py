from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from facturier.errors import (
    ConfigurationError,
    DocumentNotFoundError,
    ImmutableDocumentError,
    InvalidStatusTransitionError,
)
from facturier.models.common import DocumentType, gen_id
from facturier.models.document import AuditAction, DocumentInput
from facturier.models.totals import ComputedDocument
from facturier.services.currency import is_supported
from facturier.services.document_aggregator import compute_document
from facturier.services.lifecycle_service import DeletionOutcome, DocumentLifecycle, assert_transition, audit_row
from facturier.services.sequence_service import SequenceAllocator
from facturier.services.settings_service import SettingsService
from facturier.storage.db import Database
from facturier.storage.repo import DocumentRepository, apply_computed, copy_document_row
from facturier.storage.tables import DocumentRow

logger = logging.getLogger(__name__)

DRAFT = "DRAFT"
CANCELLED = "CANCELLED"


class DocumentService:
    """Base commune factures / devis : calcul, numérotation, enregistrement."""

    document_type: DocumentType

    def __init__(
        self,
        db: Database,
        *,
        settings: Optional[SettingsService] = None,
        sequences: Optional[SequenceAllocator] = None,
        lifecycle: Optional[DocumentLifecycle] = None,
    ):
        self.db = db
        self.settings = settings or SettingsService(db)
        self.sequences = sequences or SequenceAllocator(db, self.settings)
        self.lifecycle = lifecycle or DocumentLifecycle(db)
        self.repo = DocumentRepository(db, self.document_type)

    # ----------- Calcul -----------
    def compute(self, owner_id: str, payload: DocumentInput) -> ComputedDocument:
        owner_settings = self.settings.get_settings(owner_id)
        return compute_document(
            payload.lines,
            discount=payload.discount,
            config=owner_settings.tax_configuration,
            options=payload.taxes,
        )

    def _currency(self, owner_id: str, payload: DocumentInput) -> str:
        code = (payload.currency or self.settings.get_settings(owner_id).currency).strip().upper()
        if not is_supported(code):
            raise ConfigurationError(f"unsupported currency: {payload.currency!r}")
        return code

    # ----------- CRUD/list -----------
    def _create(self, owner_id: str, payload: DocumentInput, **columns):
        if payload.status.value == CANCELLED:
            # une annulation suppose un document existant, tracé dans le journal
            raise InvalidStatusTransitionError(self.document_type.value, "NEW", CANCELLED)
        currency = self._currency(owner_id, payload)
        computed = self.compute(owner_id, payload)
        # numéro attribué dans sa propre transaction, avant celle de l'enregistrement
        number = payload.number or self.sequences.next_number(self.document_type, owner_id)

        with self.db.transaction() as session:
            row = DocumentRow(
                id=gen_id(),
                owner_id=owner_id,
                number=number,
                status=payload.status.value,
                currency=currency,
                amount_paid_cents=0,
                **columns,
            )
            apply_computed(row, payload, computed)
            self.repo.add(session, row)
            document = self.repo.to_model(row)

        logger.info(
            "%s %s created for owner %s (total %s)",
            self.document_type.value,
            number,
            owner_id,
            document.total_gross_cents,
        )
        return document

    def _get(self, document_id: str, owner_id: Optional[str] = None):
        return self.repo.get_by_id(document_id, owner_id)

    def _list(self, owner_id: str, status: Optional[str] = None, client_id: Optional[str] = None) -> List:
        return self.repo.list_all(owner_id, status=status, client_id=client_id)

    def _update(self, owner_id: str, document_id: str, payload: DocumentInput):
        """Brouillons seulement : un document publié garde ses totaux et son numéro."""
        current = self.repo.get_by_id(document_id, owner_id)
        if current is not None and current.status.value != DRAFT:
            raise ImmutableDocumentError(self.document_type.value, document_id, current.status.value)
        currency = self._currency(owner_id, payload)
        computed = self.compute(owner_id, payload)

        with self.db.transaction() as session:
            row = self.repo.load_row(session, document_id, owner_id, for_update=True)
            if row.status != DRAFT:
                raise ImmutableDocumentError(self.document_type.value, document_id, row.status)
            previous = row.status
            target = assert_transition(self.document_type, row.status, payload.status.value)
            row.status = target.value
            if target.value == CANCELLED:
                session.add(
                    audit_row(
                        row,
                        AuditAction.CANCELLATION,
                        previous,
                        CANCELLED,
                        f"Annulation du brouillon {row.number} à l'enregistrement",
                    )
                )
            row.currency = currency
            if payload.number:
                row.number = payload.number
            apply_computed(row, payload, computed)
            session.flush()
            document = self.repo.to_model(row)

        logger.info("%s %s updated", self.document_type.value, document.number)
        return document

    def _duplicate(self, owner_id: str, document_id: str, *, today: Optional[date] = None):
        """Copie en brouillon sous un nouveau numéro ; paiements et lien de conversion non repris."""
        if self.repo.get_by_id(document_id, owner_id) is None:
            raise DocumentNotFoundError(self.document_type.value, document_id)
        number = self.sequences.next_number(self.document_type, owner_id)

        with self.db.transaction() as session:
            source = self.repo.load_row(session, document_id, owner_id)
            row = copy_document_row(
                source,
                id=gen_id(),
                number=number,
                status=DRAFT,
                quote_id=None,
                issue_date=today or date.today(),
            )
            self.repo.add(session, row)
            document = self.repo.to_model(row)

        logger.info("%s %s duplicated as %s", self.document_type.value, source.number, number)
        return document

    def _change_status(self, owner_id: str, document_id: str, new_status: str, on_change=None):
        return self.lifecycle.change_status(
            self.document_type, document_id, new_status, owner_id=owner_id, on_change=on_change
        )

    def _delete(self, owner_id: str, document_id: str) -> DeletionOutcome:
        return self.lifecycle.delete_document(self.document_type, document_id, owner_id=owner_id)
