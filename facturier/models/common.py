from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


def gen_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _decimal_to_json(value: Decimal) -> Union[int, float]:
    # taux et quantités : nombre JSON, jamais de montant monétaire ici
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# Taux (%) et quantités : toujours Decimal en mémoire, nombre en JSON.
Percent = Annotated[Decimal, Field(ge=0), PlainSerializer(_decimal_to_json, when_used="json")]
Quantity = Annotated[Decimal, Field(ge=0), PlainSerializer(_decimal_to_json, when_used="json")]
# Montant en unités mineures (centimes).
Cents = Annotated[int, Field(ge=0)]


class CamelModel(BaseModel):
    """Base des modèles persistés en JSON (clés camelCase, noms Python en snake_case)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class RoundingMode(str, Enum):
    NEAREST_CENT = "nearest-cent"
    UP = "up"
    DOWN = "down"


class DocumentType(str, Enum):
    QUOTE = "QUOTE"
    INVOICE = "INVOICE"


class TimeStamped(BaseModel):
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self):
        object.__setattr__(self, "updated_at", utcnow())
