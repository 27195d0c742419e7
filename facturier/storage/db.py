from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from facturier.config import AppConfig, get_config
from facturier.storage.tables import Base


def _install_sqlite_transactions(engine: Engine) -> None:
    """SQLite : transactions explicites en BEGIN IMMEDIATE.

    Le verrou d'écriture est pris dès l'ouverture de la transaction, donc deux
    lecteurs-écrivains concurrents (lecture du statut puis écriture) sont
    sérialisés par la base au lieu d'échouer sur un verrou mort.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # pysqlite ne doit plus émettre ses propres BEGIN
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, *, busy_timeout: float = 30.0, echo: bool = False) -> Engine:
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": busy_timeout}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # base mémoire : une seule connexion partagée
            engine = create_engine(url, connect_args=connect_args, poolclass=StaticPool, echo=echo)
        else:
            engine = create_engine(url, connect_args=connect_args, echo=echo)
        _install_sqlite_transactions(engine)
        return engine
    return create_engine(url, echo=echo, pool_pre_ping=True)


class Database:
    """Moteur + fabrique de sessions. Une transaction = un bloc ``with db.transaction()``."""

    def __init__(self, url: str, *, busy_timeout: float = 30.0, echo: bool = False) -> None:
        self.url = url
        self.engine = build_engine(url, busy_timeout=busy_timeout, echo=echo)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    @classmethod
    def from_config(cls, config: Optional[AppConfig] = None) -> "Database":
        config = config or get_config()
        url = config.resolved_database_url()
        if url.startswith("sqlite:///") and not config.database_url:
            config.data_dir.mkdir(parents=True, exist_ok=True)
        return cls(url, busy_timeout=config.sqlite_busy_timeout)

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Commit en sortie normale, rollback puis relance en cas d'exception."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


__all__ = ["Database", "build_engine"]
