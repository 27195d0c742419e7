import threading
from decimal import Decimal

import pytest

from facturier.app import Facturier
from facturier.errors import DocumentNotFoundError, InvalidStatusTransitionError
from facturier.models.common import DocumentType
from facturier.models.document import (
    AuditAction,
    InvoiceInput,
    InvoiceStatus,
    QuoteInput,
    QuoteStatus,
    STATUS_ENUMS,
)
from facturier.models.line import DocumentLineInput
from facturier.services.lifecycle_service import (
    DELETION_ACTIONS,
    STATUS_TRANSITIONS,
    DeletionOutcome,
    LifecycleAction,
    assert_transition,
    deletion_action,
)
from facturier.storage.tables import DocumentLineRow

LINES = [
    DocumentLineInput(
        description="Prestation",
        quantity=Decimal("1"),
        unit_price_cents=10000,
        vat_rate_percent=Decimal("19"),
    )
]


def _invoice(app, owner_id, status=InvoiceStatus.SENT):
    return app.invoices.create_invoice(owner_id, InvoiceInput(lines=LINES, status=status))


def test_sent_invoice_is_cancelled_then_already_cancelled(app, owner_id):
    invoice = _invoice(app, owner_id)

    outcome = app.lifecycle.delete_document(DocumentType.INVOICE, invoice.id, owner_id=owner_id)
    assert outcome is DeletionOutcome.CANCELLED
    stored = app.invoices.get_invoice(invoice.id, owner_id)
    assert stored.status is InvoiceStatus.CANCELLED
    # numéro et totaux inchangés
    assert stored.number == invoice.number
    assert stored.total_gross_cents == invoice.total_gross_cents

    entries = app.lifecycle.list_audit_entries(invoice.id)
    assert len(entries) == 1
    assert entries[0].action is AuditAction.CANCELLATION
    assert (entries[0].previous_status, entries[0].new_status) == ("SENT", "CANCELLED")

    again = app.lifecycle.delete_document(DocumentType.INVOICE, invoice.id, owner_id=owner_id)
    assert again is DeletionOutcome.ALREADY_CANCELLED
    entries = app.lifecycle.list_audit_entries(invoice.id)
    assert len(entries) == 2
    assert (entries[1].previous_status, entries[1].new_status) == ("CANCELLED", "CANCELLED")
    assert app.invoices.get_invoice(invoice.id, owner_id).status is InvoiceStatus.CANCELLED


def test_draft_is_deleted_with_audit_entry(app, db, owner_id):
    invoice = _invoice(app, owner_id, InvoiceStatus.DRAFT)

    outcome = app.invoices.delete_invoice(owner_id, invoice.id)
    assert outcome is DeletionOutcome.DELETED
    assert app.invoices.get_invoice(invoice.id, owner_id) is None

    entries = app.lifecycle.list_audit_entries(invoice.id, owner_id=owner_id)
    assert len(entries) == 1
    assert entries[0].action is AuditAction.DELETION
    assert entries[0].previous_status == "DRAFT"
    assert entries[0].new_status is None
    assert entries[0].document_number == invoice.number

    with db.transaction() as session:
        assert session.query(DocumentLineRow).filter_by(document_id=invoice.id).count() == 0


def test_unknown_document_is_not_found(app, owner_id):
    with pytest.raises(DocumentNotFoundError):
        app.lifecycle.delete_document(DocumentType.INVOICE, "missing", owner_id=owner_id)


def test_other_owner_cannot_delete(app, owner_id):
    invoice = _invoice(app, owner_id)
    with pytest.raises(DocumentNotFoundError):
        app.lifecycle.delete_document(DocumentType.INVOICE, invoice.id, owner_id="intruder")
    assert app.invoices.get_invoice(invoice.id, owner_id).status is InvoiceStatus.SENT


def test_published_quote_is_cancelled(app, owner_id):
    quote = app.quotes.create_quote(owner_id, QuoteInput(lines=LINES, status=QuoteStatus.SENT))
    assert app.quotes.delete_quote(owner_id, quote.id) is DeletionOutcome.CANCELLED
    assert app.quotes.get_quote(quote.id, owner_id).status is QuoteStatus.CANCELLED


def test_listing_filters_cancelled(app, owner_id):
    kept = _invoice(app, owner_id)
    cancelled = _invoice(app, owner_id)
    app.invoices.delete_invoice(owner_id, cancelled.id)

    default_ids = {inv.id for inv in app.invoices.list_invoices(owner_id)}
    assert default_ids == {kept.id}

    cancelled_ids = {inv.id for inv in app.invoices.list_invoices(owner_id, status="CANCELLED")}
    assert cancelled_ids == {cancelled.id}

    all_ids = {inv.id for inv in app.invoices.list_invoices(owner_id, status="all")}
    assert all_ids == {kept.id, cancelled.id}


@pytest.mark.parametrize("document_type", list(DocumentType))
def test_every_status_has_a_deletion_rule(document_type):
    statuses = set(STATUS_ENUMS[document_type])
    assert set(DELETION_ACTIONS[document_type]) == statuses
    assert set(STATUS_TRANSITIONS[document_type]) == statuses


def test_only_drafts_are_deletable():
    for document_type, table in DELETION_ACTIONS.items():
        deletable = {status.value for status, action in table.items() if action is LifecycleAction.DELETE}
        assert deletable == {"DRAFT"}
    assert deletion_action(DocumentType.INVOICE, "CANCELLED") is LifecycleAction.NOOP_CANCELLED


def test_transitions():
    assert assert_transition(DocumentType.INVOICE, "DRAFT", "SENT") is InvoiceStatus.SENT
    assert assert_transition(DocumentType.INVOICE, "SENT", "PARTIAL") is InvoiceStatus.PARTIAL
    assert assert_transition(DocumentType.QUOTE, "EXPIRED", "SENT") is QuoteStatus.SENT
    assert assert_transition(DocumentType.QUOTE, "SENT", "ACCEPTED") is QuoteStatus.ACCEPTED
    with pytest.raises(InvalidStatusTransitionError):
        assert_transition(DocumentType.INVOICE, "CANCELLED", "SENT")
    with pytest.raises(InvalidStatusTransitionError):
        assert_transition(DocumentType.INVOICE, "DRAFT", "PAID")
    # retour en arrière réservé aux paiements
    with pytest.raises(InvalidStatusTransitionError):
        assert_transition(DocumentType.INVOICE, "PAID", "PARTIAL")
    with pytest.raises(InvalidStatusTransitionError):
        assert_transition(DocumentType.INVOICE, "PAID", "SENT")
    with pytest.raises(InvalidStatusTransitionError):
        assert_transition(DocumentType.QUOTE, "ACCEPTED", "DRAFT")
    with pytest.raises(InvalidStatusTransitionError):
        assert_transition(DocumentType.QUOTE, "DECLINED", "ACCEPTED")


def test_manual_cancellation_is_audited(app, owner_id):
    invoice = _invoice(app, owner_id)
    updated = app.invoices.change_status(owner_id, invoice.id, "CANCELLED")
    assert updated.status is InvoiceStatus.CANCELLED
    entries = app.lifecycle.list_audit_entries(invoice.id)
    assert [(e.action, e.previous_status, e.new_status) for e in entries] == [
        (AuditAction.CANCELLATION, "SENT", "CANCELLED")
    ]
    with pytest.raises(InvalidStatusTransitionError):
        app.invoices.change_status(owner_id, invoice.id, "SENT")


def test_draft_cancelled_through_update_is_audited(app, owner_id):
    invoice = _invoice(app, owner_id, InvoiceStatus.DRAFT)
    updated = app.invoices.update_invoice(
        owner_id, invoice.id, InvoiceInput(lines=LINES, status=InvoiceStatus.CANCELLED)
    )
    assert updated.status is InvoiceStatus.CANCELLED
    entries = app.lifecycle.list_audit_entries(invoice.id, owner_id=owner_id)
    assert [(e.action, e.previous_status, e.new_status) for e in entries] == [
        (AuditAction.CANCELLATION, "DRAFT", "CANCELLED")
    ]
    assert entries[0].document_number == invoice.number


def test_document_cannot_be_created_cancelled(app, owner_id):
    with pytest.raises(InvalidStatusTransitionError):
        _invoice(app, owner_id, InvoiceStatus.CANCELLED)
    with pytest.raises(InvalidStatusTransitionError):
        app.quotes.create_quote(owner_id, QuoteInput(lines=LINES, status=QuoteStatus.CANCELLED))
    assert app.invoices.list_invoices(owner_id, status="all") == []
    # aucun numéro consommé
    assert _invoice(app, owner_id).number.endswith("-0001")


def _delete_concurrently(app, document_id, owner_id):
    barrier = threading.Barrier(2)
    outcomes, errors = [], []
    lock = threading.Lock()

    def worker():
        barrier.wait(timeout=10)
        try:
            outcome = app.lifecycle.delete_document(DocumentType.INVOICE, document_id, owner_id=owner_id)
        except DocumentNotFoundError as exc:
            with lock:
                errors.append(exc)
        else:
            with lock:
                outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes, errors


def test_concurrent_deletion_of_a_draft(file_db, owner_id):
    app = Facturier(file_db)
    invoice = _invoice(app, owner_id, InvoiceStatus.DRAFT)

    outcomes, errors = _delete_concurrently(app, invoice.id, owner_id)

    assert outcomes == [DeletionOutcome.DELETED]
    assert len(errors) == 1
    assert app.invoices.get_invoice(invoice.id, owner_id) is None
    entries = app.lifecycle.list_audit_entries(invoice.id)
    assert [e.action for e in entries] == [AuditAction.DELETION]


def test_concurrent_deletion_of_a_sent_invoice(file_db, owner_id):
    app = Facturier(file_db)
    invoice = _invoice(app, owner_id)

    outcomes, errors = _delete_concurrently(app, invoice.id, owner_id)

    assert errors == []
    assert sorted(o.value for o in outcomes) == ["already-cancelled", "cancelled"]
    assert app.invoices.get_invoice(invoice.id, owner_id).status is InvoiceStatus.CANCELLED
    entries = app.lifecycle.list_audit_entries(invoice.id)
    assert [(e.previous_status, e.new_status) for e in entries] == [
        ("SENT", "CANCELLED"),
        ("CANCELLED", "CANCELLED"),
    ]
