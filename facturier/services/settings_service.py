from __future__ import annotations

import logging
from typing import Any, Dict

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from facturier.errors import ConfigurationError
from facturier.models.settings import OwnerSettings
from facturier.storage.db import Database
from facturier.storage.tables import OwnerSettingsRow

logger = logging.getLogger(__name__)


def _row_to_model(row: OwnerSettingsRow) -> OwnerSettings:
    try:
        return OwnerSettings(
            owner_id=row.owner_id,
            currency=row.currency,
            default_vat_rate=row.default_vat_rate,
            invoice_prefix=row.invoice_prefix,
            quote_prefix=row.quote_prefix,
            reset_numbering_annually=row.reset_numbering_annually,
            tax_configuration=row.tax_configuration,
        )
    except ValidationError as exc:
        raise ConfigurationError(f"invalid settings for owner {row.owner_id}: {exc}") from exc


class SettingsService:
    """Réglages par propriétaire : créés à la première lecture, validés au chargement."""

    def __init__(self, db: Database):
        self.db = db

    def get_settings(self, owner_id: str) -> OwnerSettings:
        with self.db.transaction() as session:
            row = session.get(OwnerSettingsRow, owner_id)
            if row is not None:
                return _row_to_model(row)
        defaults = OwnerSettings(owner_id=owner_id)
        try:
            with self.db.transaction() as session:
                session.add(self._new_row(defaults))
        except IntegrityError:
            # créé entre-temps par un autre appel
            logger.warning("Settings for %s created concurrently, reloading", owner_id)
            with self.db.transaction() as session:
                return _row_to_model(session.get(OwnerSettingsRow, owner_id))
        logger.info("Default settings created for owner %s", owner_id)
        return defaults

    def update_settings(self, owner_id: str, changes: Dict[str, Any]) -> OwnerSettings:
        current = self.get_settings(owner_id)
        data = current.model_dump()
        data.update(changes or {})
        data["owner_id"] = owner_id
        try:
            updated = OwnerSettings.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid settings: {exc}") from exc

        with self.db.transaction() as session:
            row = session.get(OwnerSettingsRow, owner_id)
            row.currency = updated.currency
            row.default_vat_rate = updated.default_vat_rate
            row.invoice_prefix = updated.invoice_prefix
            row.quote_prefix = updated.quote_prefix
            row.reset_numbering_annually = updated.reset_numbering_annually
            row.tax_configuration = updated.tax_configuration.to_json_dict()
        return updated

    @staticmethod
    def _new_row(settings: OwnerSettings) -> OwnerSettingsRow:
        return OwnerSettingsRow(
            owner_id=settings.owner_id,
            currency=settings.currency,
            default_vat_rate=settings.default_vat_rate,
            invoice_prefix=settings.invoice_prefix,
            quote_prefix=settings.quote_prefix,
            reset_numbering_annually=settings.reset_numbering_annually,
            tax_configuration=settings.tax_configuration.to_json_dict(),
        )
