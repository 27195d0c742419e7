from pathlib import Path

import pytest

from facturier.app import Facturier
from facturier.storage.db import Database

OWNER = "owner-1"


@pytest.fixture
def db():
    database = Database("sqlite:///:memory:")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def file_db(tmp_path: Path):
    database = Database(f"sqlite:///{(tmp_path / 'facturier.db').as_posix()}", busy_timeout=60.0)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def app(db):
    return Facturier(db)


@pytest.fixture
def owner_id():
    return OWNER
