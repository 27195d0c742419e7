import threading
from datetime import date

import pytest

from facturier.errors import SequenceAllocationError
from facturier.models.common import DocumentType
from facturier.services.sequence_service import SequenceAllocator, format_number
from facturier.services.settings_service import SettingsService
from facturier.storage.tables import NumberingSequenceRow

TODAY = date(2025, 3, 14)


def test_format_number():
    assert format_number("FAC", 2025, 7, True) == "FAC-2025-0007"
    assert format_number("DEV", 2025, 12345, False) == "DEV-12345"


def test_consecutive_numbers_same_year(db, owner_id):
    allocator = SequenceAllocator(db)
    first = allocator.next_number(DocumentType.INVOICE, owner_id, today=TODAY)
    second = allocator.next_number(DocumentType.INVOICE, owner_id, today=TODAY)
    assert first == "FAC-2025-0001"
    assert second == "FAC-2025-0002"


def test_counters_are_per_type_and_owner(db, owner_id):
    allocator = SequenceAllocator(db)
    assert allocator.next_number("INVOICE", owner_id, today=TODAY) == "FAC-2025-0001"
    assert allocator.next_number("QUOTE", owner_id, today=TODAY) == "DEV-2025-0001"
    assert allocator.next_number("INVOICE", "someone-else", today=TODAY) == "FAC-2025-0001"


def test_annual_reset(db, owner_id):
    allocator = SequenceAllocator(db)
    assert allocator.next_number("INVOICE", owner_id, today=date(2025, 12, 31)) == "FAC-2025-0001"
    assert allocator.next_number("INVOICE", owner_id, today=date(2026, 1, 1)) == "FAC-2026-0001"


def test_without_reset_counter_spans_years(db, owner_id):
    allocator = SequenceAllocator(db)
    assert allocator.next_number("INVOICE", owner_id, reset_annually=False, today=date(2025, 6, 1)) == "FAC-0001"
    assert allocator.next_number("INVOICE", owner_id, reset_annually=False, today=date(2026, 6, 1)) == "FAC-0002"


def test_settings_drive_prefix_and_reset(db, owner_id):
    settings = SettingsService(db)
    allocator = SequenceAllocator(db, settings)
    assert allocator.next_number("INVOICE", owner_id, today=TODAY) == "FAC-2025-0001"

    settings.update_settings(owner_id, {"invoice_prefix": "INV"})
    # même compteur, nouveau préfixe
    assert allocator.next_number("INVOICE", owner_id, today=TODAY) == "INV-2025-0002"

    settings.update_settings(owner_id, {"reset_numbering_annually": False})
    assert allocator.next_number("INVOICE", owner_id, today=TODAY) == "INV-0001"


def test_override_prefix(db, owner_id):
    allocator = SequenceAllocator(db)
    assert allocator.next_number("QUOTE", owner_id, override_prefix="PRO", today=TODAY) == "PRO-2025-0001"


def test_counter_row_is_persisted(db, owner_id):
    allocator = SequenceAllocator(db)
    for _ in range(3):
        allocator.next_number("INVOICE", owner_id, today=TODAY)
    with db.transaction() as session:
        rows = session.query(NumberingSequenceRow).all()
        assert [(r.owner_id, r.document_type, r.period_year, r.counter) for r in rows] == [
            (owner_id, "INVOICE", 2025, 3)
        ]


def test_storage_failure_is_retryable(db, owner_id):
    allocator = SequenceAllocator(db)
    allocator.settings.get_settings(owner_id)
    NumberingSequenceRow.__table__.drop(db.engine)
    with pytest.raises(SequenceAllocationError) as excinfo:
        allocator.next_number("INVOICE", owner_id, today=TODAY)
    assert excinfo.value.retryable is True
    assert excinfo.value.__cause__ is not None


def test_concurrent_allocations_never_repeat(file_db, owner_id):
    allocator = SequenceAllocator(file_db)
    allocator.settings.get_settings(owner_id)
    results = []
    errors = []
    lock = threading.Lock()

    def worker():
        try:
            for _ in range(5):
                number = allocator.next_number("INVOICE", owner_id, today=TODAY)
                with lock:
                    results.append(number)
        except Exception as exc:  # pragma: no cover - reported below
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(results) == 40
    assert sorted(results) == [f"FAC-2025-{n:04d}" for n in range(1, 41)]
