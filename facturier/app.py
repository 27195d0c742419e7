"""Assemblage des services autour d'une base unique."""

from __future__ import annotations

from typing import Optional

from facturier.config import AppConfig, get_config
from facturier.log import configure_logging
from facturier.services.invoice_service import InvoiceService
from facturier.services.lifecycle_service import DocumentLifecycle
from facturier.services.quote_service import QuoteService
from facturier.services.sequence_service import SequenceAllocator
from facturier.services.settings_service import SettingsService
from facturier.storage.db import Database


class Facturier:
    def __init__(self, db: Database):
        self.db = db
        self.settings = SettingsService(db)
        self.sequences = SequenceAllocator(db, self.settings)
        self.lifecycle = DocumentLifecycle(db)
        self.invoices = InvoiceService(
            db, settings=self.settings, sequences=self.sequences, lifecycle=self.lifecycle
        )
        self.quotes = QuoteService(
            db,
            invoices=self.invoices,
            settings=self.settings,
            sequences=self.sequences,
            lifecycle=self.lifecycle,
        )

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None) -> "Facturier":
        config = config or get_config()
        configure_logging(config.log_level)
        db = Database.from_config(config)
        db.create_all()
        return cls(db)

    def close(self) -> None:
        self.db.dispose()
