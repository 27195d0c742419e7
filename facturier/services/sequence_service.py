"""Numérotation des documents : FAC-2025-0001, DEV-0042...

Un compteur par (propriétaire, type de document, année). Chaque attribution
est une seule instruction INSERT ... ON CONFLICT DO UPDATE ... RETURNING dans
sa propre transaction : la base sérialise les appels concurrents, aucun
verrou applicatif n'est nécessaire. Un numéro attribué puis abandonné laisse
un trou, jamais un doublon.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from facturier.errors import SequenceAllocationError
from facturier.models.common import DocumentType
from facturier.services.settings_service import SettingsService
from facturier.storage.db import Database

logger = logging.getLogger(__name__)

_NEXT_COUNTER = text(
    """
    INSERT INTO numbering_sequences (owner_id, document_type, period_year, prefix, counter, created_at, updated_at)
    VALUES (:owner_id, :document_type, :period_year, :prefix, 1, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
    ON CONFLICT (owner_id, document_type, period_year)
    DO UPDATE SET counter = numbering_sequences.counter + 1,
                  prefix = excluded.prefix,
                  updated_at = CURRENT_TIMESTAMP
    RETURNING counter
    """
)


def format_number(prefix: str, year: int, counter: int, reset_annually: bool) -> str:
    padded = f"{counter:04d}"
    if reset_annually:
        return f"{prefix}-{year}-{padded}"
    return f"{prefix}-{padded}"


class SequenceAllocator:
    def __init__(self, db: Database, settings: Optional[SettingsService] = None):
        self.db = db
        self.settings = settings or SettingsService(db)

    def next_number(
        self,
        document_type: DocumentType,
        owner_id: str,
        *,
        override_prefix: Optional[str] = None,
        reset_annually: Optional[bool] = None,
        today: Optional[date] = None,
    ) -> str:
        """Attribue le numéro suivant. Ne jamais appeler dans une transaction déjà ouverte."""
        document_type = DocumentType(document_type)
        owner_settings = self.settings.get_settings(owner_id)
        prefix = (override_prefix or "").strip() or owner_settings.prefix_for(document_type)
        reset = owner_settings.reset_numbering_annually if reset_annually is None else reset_annually
        year = (today or date.today()).year
        period_year = year if reset else 0

        params = {
            "owner_id": owner_id,
            "document_type": document_type.value,
            "period_year": period_year,
            "prefix": prefix,
        }
        try:
            with self.db.transaction() as session:
                counter = session.execute(_NEXT_COUNTER, params).scalar_one()
        except SQLAlchemyError as exc:
            logger.warning("Numbering failed for %s/%s: %s", owner_id, document_type.value, exc)
            raise SequenceAllocationError(
                f"could not allocate a {document_type.value} number for {owner_id}"
            ) from exc

        number = format_number(prefix, year, counter, reset)
        logger.info("Allocated %s number %s for owner %s", document_type.value, number, owner_id)
        return number
