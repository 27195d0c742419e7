from __future__ import annotations

from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from facturier.errors import DocumentNotFoundError
from facturier.models.common import DocumentType, utcnow
from facturier.models.document import (
    DocumentInput,
    DocumentLine,
    Invoice,
    InvoiceStatus,
    Payment,
    Quote,
    parse_status,
)
from facturier.models.line import DiscountAmount, DiscountRate
from facturier.models.totals import ComputedDocument
from facturier.storage.db import Database
from facturier.storage.tables import DocumentLineRow, DocumentRow

# filtre de statut : None -> tout sauf annulés ; "all" -> tout
STATUS_ALL = "all"

AnyDocument = Union[Invoice, Quote]


class DocumentRepository:
    """
    Dépôt SQL des factures / devis.
    - Lecture : list_all / get_by_id renvoient des modèles pydantic
    - Écriture : méthodes « row » appelées dans une transaction ouverte par le service
    """

    def __init__(self, db: Database, document_type: DocumentType) -> None:
        self.db = db
        self.document_type = DocumentType(document_type)
        self.model = Invoice if self.document_type is DocumentType.INVOICE else Quote

    # ---------------- Requêtes ---------------- #

    def _select(self, owner_id: Optional[str] = None):
        stmt = (
            select(DocumentRow)
            .where(DocumentRow.document_type == self.document_type.value)
            .options(selectinload(DocumentRow.lines), selectinload(DocumentRow.payments))
        )
        if owner_id is not None:
            stmt = stmt.where(DocumentRow.owner_id == owner_id)
        return stmt

    def _status_clause(self, stmt, status: Optional[str]):
        cancelled = InvoiceStatus.CANCELLED.value
        if status is None:
            return stmt.where(DocumentRow.status != cancelled)
        if status == STATUS_ALL:
            return stmt
        return stmt.where(DocumentRow.status == parse_status(self.document_type, status).value)

    def list_all(
        self,
        owner_id: Optional[str] = None,
        *,
        status: Optional[str] = None,
        client_id: Optional[str] = None,
        quote_id: Optional[str] = None,
    ) -> List[AnyDocument]:
        stmt = self._status_clause(self._select(owner_id), status)
        if client_id is not None:
            stmt = stmt.where(DocumentRow.client_id == client_id)
        if quote_id is not None:
            stmt = stmt.where(DocumentRow.quote_id == quote_id)
        stmt = stmt.order_by(DocumentRow.issue_date.desc(), DocumentRow.number.desc())
        with self.db.transaction() as session:
            return [self.to_model(row) for row in session.scalars(stmt).all()]

    def get_by_id(self, doc_id: str, owner_id: Optional[str] = None) -> Optional[AnyDocument]:
        stmt = self._select(owner_id).where(DocumentRow.id == doc_id)
        with self.db.transaction() as session:
            row = session.scalars(stmt).first()
            return self.to_model(row) if row is not None else None

    # ---------------- Dans une transaction ---------------- #

    def load_row(
        self,
        session: Session,
        doc_id: str,
        owner_id: Optional[str] = None,
        *,
        for_update: bool = False,
    ) -> DocumentRow:
        stmt = self._select(owner_id).where(DocumentRow.id == doc_id)
        if for_update:
            # ignoré par SQLite (BEGIN IMMEDIATE suffit), verrou de ligne ailleurs
            stmt = stmt.with_for_update()
        row = session.scalars(stmt).first()
        if row is None:
            raise DocumentNotFoundError(self.document_type.value, doc_id)
        return row

    def load_by_quote(self, session: Session, quote_id: str) -> Optional[DocumentRow]:
        return session.scalars(self._select().where(DocumentRow.quote_id == quote_id)).first()

    def add(self, session: Session, row: DocumentRow) -> DocumentRow:
        row.document_type = self.document_type.value
        session.add(row)
        session.flush()
        return row

    def delete(self, session: Session, row: DocumentRow) -> None:
        session.delete(row)
        session.flush()

    # ---------------- Conversions ---------------- #

    def to_model(self, row: DocumentRow) -> AnyDocument:
        data = {
            "id": row.id,
            "owner_id": row.owner_id,
            "document_type": self.document_type,
            "number": row.number,
            "status": row.status,
            "reference": row.reference,
            "client_id": row.client_id,
            "currency": row.currency,
            "issue_date": row.issue_date,
            "due_date": row.due_date,
            "global_discount_rate_percent": row.global_discount_rate,
            "global_discount_amount_cents": row.global_discount_amount_cents,
            "subtotal_net_cents": row.subtotal_net_cents,
            "total_discount_cents": row.total_discount_cents,
            "global_discount_applied_cents": row.global_discount_applied_cents,
            "total_vat_cents": row.total_vat_cents,
            "surcharge_amount_cents": row.surcharge_amount_cents,
            "stamp_amount_cents": row.stamp_amount_cents,
            "total_gross_cents": row.total_gross_cents,
            "amount_paid_cents": row.amount_paid_cents,
            "vat_breakdown": row.vat_breakdown or [],
            "tax_summary": row.tax_summary or [],
            "tax_configuration": row.tax_configuration,
            "lines": [_line_to_model(line) for line in row.lines],
            "payments": [
                Payment(id=p.id, amount_cents=p.amount_cents, method=p.method, paid_at=p.paid_at, note=p.note)
                for p in row.payments
            ],
            "notes": row.notes,
            "terms": row.terms,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }
        if self.document_type is DocumentType.INVOICE:
            data["quote_id"] = row.quote_id
        return self.model.model_validate(data)


def _line_to_model(line: DocumentLineRow) -> DocumentLine:
    return DocumentLine(
        position=line.position,
        product_id=line.product_id,
        description=line.description,
        unit=line.unit,
        quantity=line.quantity,
        unit_price_cents=line.unit_price_cents,
        vat_rate_percent=line.vat_rate,
        discount_rate_percent=line.discount_rate,
        discount_amount_cents=line.discount_amount_cents,
        global_discount_share_cents=line.global_discount_share_cents,
        net_amount_cents=line.net_amount_cents,
        surcharge_rate_percent=line.surcharge_rate,
        surcharge_amount_cents=line.surcharge_amount_cents,
        vat_amount_cents=line.vat_amount_cents,
        gross_amount_cents=line.gross_amount_cents,
    )


# ---------------- Construction des lignes SQL ---------------- #

def apply_computed(row: DocumentRow, payload: DocumentInput, computed: ComputedDocument) -> DocumentRow:
    """Copie saisie + totaux calculés sur ``row`` (lignes remplacées)."""
    totals = computed.totals
    discount = payload.discount
    row.reference = payload.reference
    row.client_id = payload.client_id
    row.issue_date = payload.issue_date
    row.due_date = payload.due_date
    row.global_discount_rate = discount.percent if isinstance(discount, DiscountRate) else None
    row.global_discount_amount_cents = discount.cents if isinstance(discount, DiscountAmount) else None
    row.subtotal_net_cents = totals.subtotal_net_cents
    row.total_discount_cents = totals.total_discount_cents
    row.global_discount_applied_cents = totals.global_discount_applied_cents
    row.total_vat_cents = totals.total_vat_cents
    row.surcharge_amount_cents = totals.surcharge_amount_cents
    row.stamp_amount_cents = totals.stamp_amount_cents
    row.total_gross_cents = totals.total_gross_cents
    row.vat_breakdown = totals.vat_breakdown_json()
    row.tax_summary = totals.tax_summary_json()
    row.tax_configuration = computed.tax_configuration.to_json_dict()
    row.notes = payload.notes
    row.terms = payload.terms
    row.updated_at = utcnow()

    row.lines = [
        DocumentLineRow(
            position=idx,
            product_id=source.product_id,
            description=source.description,
            unit=source.unit,
            quantity=result.quantity,
            unit_price_cents=result.unit_price_cents,
            vat_rate=result.vat_rate_percent,
            discount_rate=result.discount_rate_percent,
            discount_amount_cents=result.discount_amount_cents,
            global_discount_share_cents=result.global_discount_share_cents,
            net_amount_cents=result.net_amount_cents,
            surcharge_rate=result.surcharge_rate_percent,
            surcharge_amount_cents=result.surcharge_amount_cents,
            vat_amount_cents=result.vat_amount_cents,
            gross_amount_cents=result.gross_amount_cents,
        )
        for idx, (source, result) in enumerate(zip(payload.lines, totals.lines))
    ]
    return row


def copy_document_row(source: DocumentRow, **overrides) -> DocumentRow:
    """Copie figée d'un document (conversion devis -> facture, duplication) : totaux repris tels quels."""
    row = DocumentRow(
        owner_id=source.owner_id,
        reference=source.reference,
        client_id=source.client_id,
        currency=source.currency,
        issue_date=source.issue_date,
        due_date=source.due_date,
        global_discount_rate=source.global_discount_rate,
        global_discount_amount_cents=source.global_discount_amount_cents,
        subtotal_net_cents=source.subtotal_net_cents,
        total_discount_cents=source.total_discount_cents,
        global_discount_applied_cents=source.global_discount_applied_cents,
        total_vat_cents=source.total_vat_cents,
        surcharge_amount_cents=source.surcharge_amount_cents,
        stamp_amount_cents=source.stamp_amount_cents,
        total_gross_cents=source.total_gross_cents,
        amount_paid_cents=0,
        vat_breakdown=list(source.vat_breakdown or []),
        tax_summary=list(source.tax_summary or []),
        tax_configuration=source.tax_configuration,
        notes=source.notes,
        terms=source.terms,
        lines=[
            DocumentLineRow(
                position=line.position,
                product_id=line.product_id,
                description=line.description,
                unit=line.unit,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                vat_rate=line.vat_rate,
                discount_rate=line.discount_rate,
                discount_amount_cents=line.discount_amount_cents,
                global_discount_share_cents=line.global_discount_share_cents,
                net_amount_cents=line.net_amount_cents,
                surcharge_rate=line.surcharge_rate,
                surcharge_amount_cents=line.surcharge_amount_cents,
                vat_amount_cents=line.vat_amount_cents,
                gross_amount_cents=line.gross_amount_cents,
            )
            for line in source.lines
        ],
    )
    for key, value in overrides.items():
        setattr(row, key, value)
    return row


__all__ = ["DocumentRepository", "STATUS_ALL", "apply_computed", "copy_document_row"]
