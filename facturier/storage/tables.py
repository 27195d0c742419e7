"""SQLAlchemy tables for documents, numbering sequences and the audit log."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from facturier.models.common import gen_id, utcnow

Base = declarative_base()


class DecimalText(TypeDecorator):
    """Decimal stocké en texte : pas de flottant, pas de perte sur SQLite."""

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(Decimal(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(value)


class OwnerSettingsRow(Base):
    __tablename__ = "owner_settings"

    owner_id = Column(String, primary_key=True)
    currency = Column(String(3), nullable=False, default="TND")
    default_vat_rate = Column(DecimalText, nullable=False, default=Decimal("19"))
    invoice_prefix = Column(String, nullable=False, default="FAC")
    quote_prefix = Column(String, nullable=False, default="DEV")
    reset_numbering_annually = Column(Boolean, nullable=False, default=True)
    tax_configuration = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class DocumentRow(Base):
    """Facture ou devis. Totaux et numéro figés à la création."""

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("owner_id", "document_type", "number", name="uq_documents_number"),
        Index("ix_documents_owner_type_status", "owner_id", "document_type", "status"),
        # une seule facture par devis converti (NULL hors conversion)
        UniqueConstraint("document_type", "quote_id", name="uq_documents_quote"),
    )

    id = Column(String, primary_key=True, default=gen_id)
    owner_id = Column(String, nullable=False, index=True)
    document_type = Column(String(16), nullable=False)
    number = Column(String, nullable=False)
    status = Column(String(16), nullable=False)
    reference = Column(String, nullable=True)
    client_id = Column(String, nullable=True)
    quote_id = Column(String, nullable=True)
    currency = Column(String(3), nullable=False, default="TND")
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)

    global_discount_rate = Column(DecimalText, nullable=True)
    global_discount_amount_cents = Column(Integer, nullable=True)

    subtotal_net_cents = Column(Integer, nullable=False, default=0)
    total_discount_cents = Column(Integer, nullable=False, default=0)
    global_discount_applied_cents = Column(Integer, nullable=False, default=0)
    total_vat_cents = Column(Integer, nullable=False, default=0)
    surcharge_amount_cents = Column(Integer, nullable=False, default=0)
    stamp_amount_cents = Column(Integer, nullable=False, default=0)
    total_gross_cents = Column(Integer, nullable=False, default=0)
    amount_paid_cents = Column(Integer, nullable=False, default=0)

    # stockés tels quels, jamais recalculés à la lecture
    vat_breakdown = Column(JSON, nullable=False, default=list)
    tax_summary = Column(JSON, nullable=False, default=list)
    tax_configuration = Column(JSON, nullable=True)

    notes = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    lines = relationship(
        "DocumentLineRow",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentLineRow.position",
    )
    payments = relationship(
        "PaymentRow",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="PaymentRow.paid_at",
    )


class DocumentLineRow(Base):
    __tablename__ = "document_lines"

    id = Column(String, primary_key=True, default=gen_id)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    product_id = Column(String, nullable=True)
    description = Column(Text, nullable=False, default="")
    unit = Column(String, nullable=False, default="unité")
    quantity = Column(DecimalText, nullable=False)
    unit_price_cents = Column(Integer, nullable=False)
    vat_rate = Column(DecimalText, nullable=False)
    discount_rate = Column(DecimalText, nullable=True)
    discount_amount_cents = Column(Integer, nullable=False, default=0)
    global_discount_share_cents = Column(Integer, nullable=False, default=0)
    net_amount_cents = Column(Integer, nullable=False, default=0)
    surcharge_rate = Column(DecimalText, nullable=True)
    surcharge_amount_cents = Column(Integer, nullable=False, default=0)
    vat_amount_cents = Column(Integer, nullable=False, default=0)
    gross_amount_cents = Column(Integer, nullable=False, default=0)

    document = relationship("DocumentRow", back_populates="lines")


class PaymentRow(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=gen_id)
    document_id = Column(String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)
    owner_id = Column(String, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    method = Column(String, nullable=True)
    paid_at = Column(Date, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    document = relationship("DocumentRow", back_populates="payments")


class NumberingSequenceRow(Base):
    """Compteur par (propriétaire, type, année); year = 0 sans remise à zéro annuelle."""

    __tablename__ = "numbering_sequences"
    __table_args__ = (
        UniqueConstraint("owner_id", "document_type", "period_year", name="uq_numbering_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String, nullable=False)
    document_type = Column(String(16), nullable=False)
    period_year = Column(Integer, nullable=False)
    prefix = Column(String, nullable=False)
    counter = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLogRow(Base):
    """Journal en ajout seul. Pas de clé étrangère : le document peut avoir été supprimé."""

    __tablename__ = "document_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(String, nullable=False, index=True)
    document_type = Column(String(16), nullable=False)
    owner_id = Column(String, nullable=False)
    document_number = Column(String, nullable=True)
    action = Column(String(16), nullable=False)
    previous_status = Column(String(16), nullable=True)
    new_status = Column(String(16), nullable=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


__all__ = [
    "Base",
    "AuditLogRow",
    "DecimalText",
    "DocumentLineRow",
    "DocumentRow",
    "NumberingSequenceRow",
    "OwnerSettingsRow",
    "PaymentRow",
]
