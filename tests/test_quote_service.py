import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from facturier.app import Facturier
from facturier.errors import DocumentNotFoundError, ImmutableDocumentError, InvalidStatusTransitionError
from facturier.models.document import InvoiceInput, InvoiceStatus, QuoteInput, QuoteStatus
from facturier.models.line import DiscountAmount, DocumentLineInput


def _payload(**kwargs):
    data = {
        "client_id": "client-1",
        "reference": "Projet sono",
        "lines": [
            DocumentLineInput(
                description="Enceinte",
                quantity=Decimal("4"),
                unit_price_cents=12500,
                vat_rate_percent=Decimal("19"),
            ),
        ],
        "discount": DiscountAmount(cents=5000),
    }
    data.update(kwargs)
    return QuoteInput(**data)


def test_create_quote_uses_quote_numbering(app, owner_id):
    quote = app.quotes.create_quote(owner_id, _payload())
    assert quote.number == f"DEV-{date.today().year}-0001"
    assert quote.status is QuoteStatus.DRAFT
    assert quote.global_discount_applied_cents == 5000
    assert quote.subtotal_net_cents == 50000


def test_update_and_status_change(app, owner_id):
    quote = app.quotes.create_quote(owner_id, _payload())
    updated = app.quotes.update_quote(owner_id, quote.id, _payload(discount=DiscountAmount(cents=0)))
    assert updated.global_discount_applied_cents == 0

    sent = app.quotes.change_status(owner_id, quote.id, "SENT")
    assert sent.status is QuoteStatus.SENT
    with pytest.raises(ImmutableDocumentError):
        app.quotes.update_quote(owner_id, quote.id, _payload())


def test_convert_to_invoice_copies_totals(app, owner_id):
    quote = app.quotes.create_quote(owner_id, _payload(status=QuoteStatus.SENT))
    invoice = app.quotes.convert_to_invoice(owner_id, quote.id, today=date(2025, 4, 2))

    assert invoice.status is InvoiceStatus.SENT
    assert invoice.quote_id == quote.id
    assert invoice.number.startswith("FAC-")
    assert invoice.issue_date == date(2025, 4, 2)
    assert invoice.total_gross_cents == quote.total_gross_cents
    assert invoice.total_vat_cents == quote.total_vat_cents
    assert [line.gross_amount_cents for line in invoice.lines] == [line.gross_amount_cents for line in quote.lines]
    assert invoice.tax_summary == quote.tax_summary
    assert invoice.amount_paid_cents == 0

    assert app.quotes.get_quote(quote.id, owner_id).status is QuoteStatus.ACCEPTED


def test_conversion_is_idempotent(app, owner_id):
    quote = app.quotes.create_quote(owner_id, _payload(status=QuoteStatus.SENT))
    first = app.quotes.convert_to_invoice(owner_id, quote.id)
    second = app.quotes.convert_to_invoice(owner_id, quote.id)
    assert first.id == second.id
    assert len(app.invoices.list_by_quote(quote.id, owner_id)) == 1


def test_cancelled_quote_cannot_be_converted(app, owner_id):
    quote = app.quotes.create_quote(owner_id, _payload(status=QuoteStatus.SENT))
    app.quotes.delete_quote(owner_id, quote.id)
    with pytest.raises(InvalidStatusTransitionError):
        app.quotes.convert_to_invoice(owner_id, quote.id)


def test_converting_unknown_quote(app, owner_id):
    with pytest.raises(DocumentNotFoundError):
        app.quotes.convert_to_invoice(owner_id, "missing")


def test_draft_quote_deletion(app, owner_id):
    quote = app.quotes.create_quote(owner_id, _payload())
    app.quotes.delete_quote(owner_id, quote.id)
    assert app.quotes.get_quote(quote.id, owner_id) is None
    assert app.quotes.list_quotes(owner_id, status="all") == []


def test_concurrent_conversions_create_one_invoice(file_db, owner_id, monkeypatch):
    app = Facturier(file_db)
    quote = app.quotes.create_quote(owner_id, _payload(status=QuoteStatus.SENT))

    # les deux conversions passent la vérification initiale avant d'écrire
    barrier = threading.Barrier(2)
    allocate = app.sequences.next_number

    def next_number(*args, **kwargs):
        barrier.wait(timeout=10)
        return allocate(*args, **kwargs)

    monkeypatch.setattr(app.sequences, "next_number", next_number)

    results, errors = [], []
    lock = threading.Lock()

    def worker():
        try:
            invoice = app.quotes.convert_to_invoice(owner_id, quote.id)
        except Exception as exc:  # pragma: no cover - reported below
            with lock:
                errors.append(exc)
        else:
            with lock:
                results.append(invoice)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(results) == 2
    assert results[0].id == results[1].id
    assert len(app.invoices.list_by_quote(quote.id, owner_id)) == 1
    assert len(app.invoices.list_invoices(owner_id, status="all")) == 1
    assert app.quotes.get_quote(quote.id, owner_id).status is QuoteStatus.ACCEPTED


def test_one_invoice_per_quote_in_storage(app, owner_id):
    lines = _payload().lines
    app.invoices.create_invoice(owner_id, InvoiceInput(lines=lines), quote_id="quote-1")
    with pytest.raises(IntegrityError):
        app.invoices.create_invoice(owner_id, InvoiceInput(lines=lines), quote_id="quote-1")


def test_list_by_quote_filters_on_quote(app, owner_id):
    lines = _payload().lines
    first = app.invoices.create_invoice(owner_id, InvoiceInput(lines=lines, status=InvoiceStatus.SENT), quote_id="q-1")
    app.invoices.create_invoice(owner_id, InvoiceInput(lines=lines), quote_id="q-2")
    app.invoices.create_invoice(owner_id, InvoiceInput(lines=lines))
    app.invoices.delete_invoice(owner_id, first.id)

    # les factures annulées restent rattachées au devis
    assert [inv.id for inv in app.invoices.list_by_quote("q-1", owner_id)] == [first.id]
    assert app.invoices.list_by_quote("q-1", "someone-else") == []
    assert app.invoices.list_by_quote("q-3", owner_id) == []


def test_duplicate_quote(app, owner_id):
    quote = app.quotes.create_quote(owner_id, _payload(status=QuoteStatus.SENT, due_date=date(2025, 6, 30)))
    app.quotes.convert_to_invoice(owner_id, quote.id)

    copy = app.quotes.duplicate_quote(owner_id, quote.id, today=date(2025, 5, 2))

    assert copy.id != quote.id
    assert copy.number == f"DEV-{date.today().year}-0002"
    assert copy.status is QuoteStatus.DRAFT
    assert copy.issue_date == date(2025, 5, 2)
    assert copy.due_date == date(2025, 6, 30)
    assert copy.client_id == quote.client_id
    assert copy.total_gross_cents == quote.total_gross_cents
    assert [line.description for line in copy.lines] == ["Enceinte"]
    assert app.quotes.get_quote(quote.id, owner_id).status is QuoteStatus.ACCEPTED

    with pytest.raises(DocumentNotFoundError):
        app.quotes.duplicate_quote(owner_id, "missing")


def test_change_quotes_status_bulk(app, owner_id):
    first = app.quotes.create_quote(owner_id, _payload())
    second = app.quotes.create_quote(owner_id, _payload())
    draft = app.quotes.create_quote(owner_id, _payload())

    ids = [first.id, first.id, "", second.id, "missing"]
    assert app.quotes.change_quotes_status_bulk(owner_id, ids, "SENT") == 2
    assert app.quotes.get_quote(first.id, owner_id).status is QuoteStatus.SENT

    # brouillon -> accepté refusé, le reste du lot passe
    accepted = app.quotes.change_quotes_status_bulk(owner_id, [first.id, second.id, draft.id], "ACCEPTED")
    assert accepted == 2
    assert app.quotes.get_quote(draft.id, owner_id).status is QuoteStatus.DRAFT

    assert app.quotes.change_quotes_status_bulk(owner_id, [], "SENT") == 0
    with pytest.raises(ValueError):
        app.quotes.change_quotes_status_bulk(owner_id, [draft.id], "UNKNOWN")


def test_delete_quotes_bulk(app, owner_id):
    draft = app.quotes.create_quote(owner_id, _payload())
    sent = app.quotes.create_quote(owner_id, _payload(status=QuoteStatus.SENT))
    cancelled = app.quotes.create_quote(owner_id, _payload(status=QuoteStatus.SENT))
    app.quotes.delete_quote(owner_id, cancelled.id)

    ids = [draft.id, sent.id, sent.id, cancelled.id, "", "missing"]
    assert app.quotes.delete_quotes_bulk(owner_id, ids) == 2

    assert app.quotes.get_quote(draft.id, owner_id) is None
    assert app.quotes.get_quote(sent.id, owner_id).status is QuoteStatus.CANCELLED
    assert app.quotes.delete_quotes_bulk(owner_id, []) == 0
