"""Cycle de vie des documents : suppression ou annulation, changements de statut.

Un brouillon peut disparaître. Un document publié (numéro communiqué au
client) n'est jamais supprimé : la demande de suppression devient une
annulation. Chaque décision laisse une entrée dans le journal d'audit.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Union

from sqlalchemy import select

from facturier.errors import InvalidStatusTransitionError
from facturier.models.common import DocumentType, utcnow
from facturier.models.document import (
    AuditAction,
    AuditLogEntry,
    InvoiceStatus,
    QuoteStatus,
    parse_status,
)
from facturier.storage.db import Database
from facturier.storage.repo import DocumentRepository
from facturier.storage.tables import AuditLogRow, DocumentRow

logger = logging.getLogger(__name__)

AnyStatus = Union[InvoiceStatus, QuoteStatus]


class DeletionOutcome(str, Enum):
    DELETED = "deleted"
    CANCELLED = "cancelled"
    ALREADY_CANCELLED = "already-cancelled"


class LifecycleAction(str, Enum):
    DELETE = "DELETE"
    CANCEL = "CANCEL"
    NOOP_CANCELLED = "NOOP_CANCELLED"


# ---------- Suppression : une entrée par statut, sans valeur par défaut ---------- #

DELETION_ACTIONS: Dict[DocumentType, Dict[AnyStatus, LifecycleAction]] = {
    DocumentType.INVOICE: {
        InvoiceStatus.DRAFT: LifecycleAction.DELETE,
        InvoiceStatus.SENT: LifecycleAction.CANCEL,
        InvoiceStatus.PARTIAL: LifecycleAction.CANCEL,
        InvoiceStatus.PAID: LifecycleAction.CANCEL,
        InvoiceStatus.OVERDUE: LifecycleAction.CANCEL,
        InvoiceStatus.CANCELLED: LifecycleAction.NOOP_CANCELLED,
    },
    DocumentType.QUOTE: {
        QuoteStatus.DRAFT: LifecycleAction.DELETE,
        QuoteStatus.SENT: LifecycleAction.CANCEL,
        QuoteStatus.ACCEPTED: LifecycleAction.CANCEL,
        QuoteStatus.DECLINED: LifecycleAction.CANCEL,
        QuoteStatus.EXPIRED: LifecycleAction.CANCEL,
        QuoteStatus.CANCELLED: LifecycleAction.NOOP_CANCELLED,
    },
}


# ---------- Transitions de statut ---------- #
# Changements manuels uniquement. Les statuts déduits des paiements
# (PARTIAL <-> PAID <-> SENT/OVERDUE) passent par InvoiceService._reconcile.

STATUS_TRANSITIONS: Dict[DocumentType, Dict[AnyStatus, FrozenSet[AnyStatus]]] = {
    DocumentType.INVOICE: {
        InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.CANCELLED}),
        InvoiceStatus.SENT: frozenset(
            {InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}
        ),
        InvoiceStatus.PARTIAL: frozenset({InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}),
        InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PARTIAL, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
        InvoiceStatus.PAID: frozenset({InvoiceStatus.CANCELLED}),
        InvoiceStatus.CANCELLED: frozenset(),
    },
    DocumentType.QUOTE: {
        QuoteStatus.DRAFT: frozenset({QuoteStatus.SENT, QuoteStatus.CANCELLED}),
        QuoteStatus.SENT: frozenset(
            {QuoteStatus.ACCEPTED, QuoteStatus.DECLINED, QuoteStatus.EXPIRED, QuoteStatus.CANCELLED}
        ),
        QuoteStatus.ACCEPTED: frozenset({QuoteStatus.CANCELLED}),
        QuoteStatus.DECLINED: frozenset({QuoteStatus.CANCELLED}),
        # un devis expiré peut être renvoyé
        QuoteStatus.EXPIRED: frozenset({QuoteStatus.SENT, QuoteStatus.CANCELLED}),
        QuoteStatus.CANCELLED: frozenset(),
    },
}


def deletion_action(document_type: DocumentType, status: str) -> LifecycleAction:
    document_type = DocumentType(document_type)
    parsed = parse_status(document_type, status)
    try:
        return DELETION_ACTIONS[document_type][parsed]
    except KeyError:
        # statut ajouté à l'enum sans décision de suppression
        raise LookupError(f"no deletion rule for {document_type.value} status {parsed.value}") from None


def assert_transition(document_type: DocumentType, current: str, requested: str) -> AnyStatus:
    document_type = DocumentType(document_type)
    current_status = parse_status(document_type, current)
    requested_status = parse_status(document_type, requested)
    if requested_status is current_status:
        return requested_status
    allowed = STATUS_TRANSITIONS[document_type].get(current_status, frozenset())
    if requested_status not in allowed:
        raise InvalidStatusTransitionError(document_type.value, current_status.value, requested_status.value)
    return requested_status


def audit_row(row: DocumentRow, action: AuditAction, previous: str, new: Optional[str], note: str) -> AuditLogRow:
    return AuditLogRow(
        document_id=row.id,
        document_type=row.document_type,
        owner_id=row.owner_id,
        document_number=row.number,
        action=action.value,
        previous_status=previous,
        new_status=new,
        note=note,
        created_at=utcnow(),
    )


class DocumentLifecycle:
    def __init__(self, db: Database):
        self.db = db
        self.repos = {
            DocumentType.INVOICE: DocumentRepository(db, DocumentType.INVOICE),
            DocumentType.QUOTE: DocumentRepository(db, DocumentType.QUOTE),
        }

    def delete_document(
        self,
        document_type: DocumentType,
        document_id: str,
        *,
        owner_id: Optional[str] = None,
    ) -> DeletionOutcome:
        """Supprime un brouillon, annule un document publié. Une seule transaction."""
        repo = self.repos[DocumentType(document_type)]
        with self.db.transaction() as session:
            row = repo.load_row(session, document_id, owner_id, for_update=True)
            status = row.status
            action = deletion_action(repo.document_type, status)
            cancelled = InvoiceStatus.CANCELLED.value

            if action is LifecycleAction.DELETE:
                session.add(
                    audit_row(
                        row,
                        AuditAction.DELETION,
                        status,
                        None,
                        f"Suppression définitive du document {row.number} à l'état brouillon",
                    )
                )
                repo.delete(session, row)
                outcome = DeletionOutcome.DELETED
            elif action is LifecycleAction.NOOP_CANCELLED:
                session.add(
                    audit_row(
                        row,
                        AuditAction.CANCELLATION,
                        status,
                        cancelled,
                        f"Nouvelle demande de suppression ignorée : {row.number} déjà annulé",
                    )
                )
                outcome = DeletionOutcome.ALREADY_CANCELLED
            else:
                row.status = cancelled
                row.updated_at = utcnow()
                session.add(
                    audit_row(
                        row,
                        AuditAction.CANCELLATION,
                        status,
                        cancelled,
                        f"Suppression convertie en annulation pour {row.number}",
                    )
                )
                outcome = DeletionOutcome.CANCELLED

        logger.info(
            "%s %s (%s): deletion request -> %s",
            repo.document_type.value,
            document_id,
            status,
            outcome.value,
        )
        return outcome

    def change_status(
        self,
        document_type: DocumentType,
        document_id: str,
        new_status: str,
        *,
        owner_id: Optional[str] = None,
        on_change: Optional[Callable[[DocumentRow], None]] = None,
    ):
        """Applique une transition autorisée et renvoie le document à jour.

        ``on_change`` est appelé sur la ligne verrouillée, dans la même transaction.
        """
        repo = self.repos[DocumentType(document_type)]
        with self.db.transaction() as session:
            row = repo.load_row(session, document_id, owner_id, for_update=True)
            previous = row.status
            target = assert_transition(repo.document_type, previous, new_status)
            row.status = target.value
            if on_change is not None:
                on_change(row)
            if target.value != previous:
                row.updated_at = utcnow()
                if target.value == InvoiceStatus.CANCELLED.value:
                    session.add(
                        audit_row(
                            row,
                            AuditAction.CANCELLATION,
                            previous,
                            target.value,
                            f"Annulation manuelle de {row.number}",
                        )
                    )
            session.flush()
            document = repo.to_model(row)

        if target.value != previous:
            logger.info("%s %s: %s -> %s", repo.document_type.value, document_id, previous, target.value)
        return document

    def list_audit_entries(self, document_id: str, *, owner_id: Optional[str] = None) -> List[AuditLogEntry]:
        stmt = select(AuditLogRow).where(AuditLogRow.document_id == document_id)
        if owner_id is not None:
            stmt = stmt.where(AuditLogRow.owner_id == owner_id)
        stmt = stmt.order_by(AuditLogRow.id)
        with self.db.transaction() as session:
            return [
                AuditLogEntry(
                    id=row.id,
                    document_id=row.document_id,
                    document_type=row.document_type,
                    owner_id=row.owner_id,
                    document_number=row.document_number,
                    action=row.action,
                    previous_status=row.previous_status,
                    new_status=row.new_status,
                    note=row.note,
                    created_at=row.created_at,
                )
                for row in session.scalars(stmt).all()
            ]
